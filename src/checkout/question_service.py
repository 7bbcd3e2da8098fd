import logging
import re
from typing import Any, Iterable, List, Set

from src.checkout.schemas import QuestionSchema

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATORS = re.compile(r"[\s-]+")
_INVALID = re.compile(r"[^a-z0-9_]")

_IRREGULAR_KEYS = {"idtype": "id_type", "idnumber": "id_number"}

QUESTION_LIST_KEYS = (
    "passenger_questions",
    "passengerQuestions",
    "passenger_questionnaire",
    "passengerQuestionnaire",
    "questions",
)
QUESTION_ITEM_KEYS = ("question_key", "questionKey", "key", "name", "id")
REQUIRED_MAP_KEYS = ("required_passenger_questions", "requiredPassengerQuestions")

MAX_SCAN_DEPTH = 6


def normalize_question_key(value: Any) -> str:
    """Normalize a question key: ``dateOfBirth`` -> ``date_of_birth``, ``ID-Type`` -> ``id_type``"""
    raw = str(value if value is not None else "").strip()
    if not raw:
        return ""

    key = _CAMEL_BOUNDARY.sub(r"\1_\2", raw).strip().lower()
    key = _SEPARATORS.sub("_", key)
    key = _INVALID.sub("", key)
    return _IRREGULAR_KEYS.get(key, key)


class QuestionSchemaExtractor:
    """Discovers the passenger questions a trip requires from a cart snapshot"""

    def extract(self, cart: Any, trip_ids: Iterable[str] = ()) -> QuestionSchema:
        """Scan the cart; every discovered key is treated as required"""
        try:
            keys = self._scan_cart(cart, {str(t).strip() for t in trip_ids if t})
        except Exception:
            logger.warning("Passenger question scan failed; continuing without a schema", exc_info=True)
            return QuestionSchema()

        required = list(keys)
        schema = QuestionSchema(required=required, optional=[], all=list(required))
        logger.debug("Discovered passenger questions", extra={"required": required})
        return schema

    def _scan_cart(self, cart: Any, trip_ids: Set[str]) -> List[str]:
        found: List[str] = []

        if not isinstance(cart, dict):
            return found

        items = cart.get("items") if isinstance(cart.get("items"), list) else []
        for item in items:
            if not isinstance(item, dict):
                continue
            trip_id = str(item.get("trip_id") or "")
            if trip_ids and trip_id and trip_id not in trip_ids:
                continue

            for map_key in REQUIRED_MAP_KEYS:
                required_map = item.get(map_key)
                if isinstance(required_map, dict):
                    for key in required_map:
                        self._push(found, key)

            self._scan_node(item, found, 0)

        # The rest of the cart, without re-entering out-of-scope line items
        self._scan_node({k: v for k, v in cart.items() if k != "items"}, found, 0)
        return found

    def _scan_node(self, node: Any, found: List[str], depth: int) -> None:
        if node is None or depth > MAX_SCAN_DEPTH:
            return

        if isinstance(node, list):
            for child in node:
                self._scan_node(child, found, depth + 1)
            return

        if not isinstance(node, dict):
            return

        for list_key in QUESTION_LIST_KEYS:
            questions = node.get(list_key)
            if isinstance(questions, list):
                self._scan_question_list(questions, found)

        for key, value in node.items():
            if key == "metadata":
                continue
            self._scan_node(value, found, depth + 1)

    def _scan_question_list(self, questions: List[Any], found: List[str]) -> None:
        for question in questions:
            if isinstance(question, str):
                self._push(found, question)
                continue
            if not isinstance(question, dict):
                continue
            for item_key in QUESTION_ITEM_KEYS:
                if question.get(item_key):
                    self._push(found, question[item_key])
                    break

    @staticmethod
    def _push(found: List[str], key: Any) -> None:
        normalized = normalize_question_key(key)
        if normalized and normalized not in found:
            found.append(normalized)
