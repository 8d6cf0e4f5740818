"""
Module-managed ritual spell items.

Classes whose ``ritualCasting`` rule is ``always`` may cast every ritual
they can access without preparing it. The reconciler keeps one owned
``method=ritual`` copy per such spell, marked with the ``isModuleRitual``
flag, and removes marked copies whose class lost the rule.
"""

from __future__ import annotations

import logging

from .constants import MAX_SPELL_LEVEL, MODULE_ID, Flags, PreparationMode, RitualCastingMode, wizard_flag
from .detector import ClassDetector
from .exceptions import SpellStateError
from .host import Actor
from .identity import canonical_identity
from .loader import SpellListResolver, SpellLoader
from .models import Spell, SpellcastingClass
from .rules import RuleResolver
from .wizard import WizardSpellbook

logger = logging.getLogger(__name__)


def ritual_copy(source: Spell, class_identifier: str) -> Spell:
    """An owned-spell template for a module-managed ritual copy."""
    flags = dict(source.flags)
    flags[MODULE_ID] = {**flags.get(MODULE_ID, {}), "isModuleRitual": True}
    return source.model_copy(
        update={
            "method": PreparationMode.RITUAL.value,
            "prepared": 0,
            "source_class": class_identifier,
            "flags": flags,
        }
    )


class RitualReconciler:
    """Adds and removes module-managed ritual copies on an actor."""

    def __init__(
        self,
        rules: RuleResolver,
        resolver: SpellListResolver,
        loader: SpellLoader,
        detector: ClassDetector | None = None,
    ) -> None:
        self.rules = rules
        self.resolver = resolver
        self.loader = loader
        self.detector = detector or ClassDetector(rules)

    def _ritual_classes(self, actor: Actor, classes: list[SpellcastingClass]) -> dict[str, SpellcastingClass]:
        wizard_ids = set(self.detector.wizard_classes(actor, classes))
        result = {}
        for spellcasting_class in classes:
            identifier = spellcasting_class.identifier
            mode = self.rules.get_class_rules(actor, identifier).ritual_casting
            if mode != RitualCastingMode.ALWAYS:
                continue
            if identifier in wizard_ids and actor.get_flag(wizard_flag(Flags.WIZARD_RITUAL_CASTING, identifier)) is False:
                continue
            result[identifier] = spellcasting_class
        return result

    async def _source_rituals(
        self, actor: Actor, spellcasting_class: SpellcastingClass, is_wizard: bool
    ) -> dict[str, Spell]:
        if is_wizard:
            identities = set(WizardSpellbook(actor, spellcasting_class.identifier, self.rules).get())
        else:
            identities = await self.resolver.get_class_spell_list(actor, spellcasting_class)
        if not identities:
            return {}
        documents = await self.loader.load_documents(identities, MAX_SPELL_LEVEL)
        return {canonical_identity(doc): doc for doc in documents if doc.is_ritual and doc.level > 0}

    async def reconcile(self, actor: Actor, classes: list[SpellcastingClass] | None = None) -> dict[str, int]:
        """Bring module-managed ritual items in line with the class rules.

        Best effort: a class whose sources cannot be loaded is skipped and a
        failing write is logged. Calling it again retries.

        Args:
            actor: Actor to reconcile
            classes: Detected spellcasting classes, detected when omitted

        Returns:
            ``{"created": n, "removed": n}``
        """
        classes = classes if classes is not None else self.detector.detect(actor)
        ritual_classes = self._ritual_classes(actor, classes)
        wizard_ids = set(self.detector.wizard_classes(actor, classes))
        module_rituals = [spell for spell in actor.spells() if spell.is_module_ritual]

        to_remove = [spell.id for spell in module_rituals if spell.source_class not in ritual_classes]
        to_create: list[Spell] = []

        for identifier, spellcasting_class in ritual_classes.items():
            try:
                wanted = await self._source_rituals(actor, spellcasting_class, identifier in wizard_ids)
            except SpellStateError as e:
                logger.warning(f"Skipping ritual reconciliation for {identifier} on {actor.name}: {e.message}")
                continue

            seen: set[str] = set()
            for spell in module_rituals:
                if spell.source_class != identifier:
                    continue
                identity = canonical_identity(spell)
                if identity not in wanted or identity in seen:
                    to_remove.append(spell.id)
                else:
                    seen.add(identity)
            for identity, document in wanted.items():
                if identity not in seen:
                    to_create.append(ritual_copy(document, identifier))

        removed = created = 0
        if to_remove:
            try:
                await actor.delete_items(to_remove)
                removed = len(to_remove)
            except Exception as e:
                logger.error(f"Failed to remove {len(to_remove)} ritual items from {actor.name}: {e}")
        if to_create:
            try:
                created = len(await actor.create_spells(to_create))
            except Exception as e:
                logger.error(f"Failed to create {len(to_create)} ritual items on {actor.name}: {e}")
        if created or removed:
            logger.info(f"Ritual reconciliation on {actor.name}: {created} created, {removed} removed")
        return {"created": created, "removed": removed}


__all__ = ["RitualReconciler", "ritual_copy"]
