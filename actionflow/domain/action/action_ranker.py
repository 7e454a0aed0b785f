from typing import List, Optional
import re

from actionflow.domain.models.action_state import ActionDefinition

_CREATE_VERB = re.compile(r"\b(?:create|add|make|new)\s+(?:an?\s+|the\s+)?(\w+)")


def primary_entity(message: str) -> Optional[str]:
    """Word following create/add/make/new, if any"""

    match = _CREATE_VERB.search(message.lower())
    if not match:
        return None
    return match.group(1)


class ActionRanker:
    """Ranks action templates by keyword relevance to a message"""

    def score(self, message: str, action: ActionDefinition) -> int:
        """Relevance score of one action for a message"""

        text = message.lower()
        score = 0

        entity = primary_entity(text)
        if entity:
            singular = entity[:-1] if entity.endswith("s") else entity
            if singular and singular in action.id.lower():
                score += 100

        score += 10 * sum(1 for trigger in action.triggers if trigger.lower() in text)

        if action.label and action.label.lower() in text:
            score += 5

        words = [w for w in re.split(r"[_\W]+", action.id.lower()) if len(w) > 3]
        score += 3 * sum(1 for w in words if w in text)

        return score

    def top_relevant(self, message: str, actions: List[ActionDefinition], limit: int = 10) -> List[ActionDefinition]:
        """Highest scoring actions, registration order kept for ties

        Falls back to the first actions when nothing scores, so the
        classifier always sees some candidates.
        """

        scored = [(self.score(message, action), index, action) for index, action in enumerate(actions)]
        relevant = [entry for entry in scored if entry[0] > 0]
        if not relevant:
            return actions[:limit]
        relevant.sort(key=lambda entry: (-entry[0], entry[1]))
        return [entry[2] for entry in relevant[:limit]]
