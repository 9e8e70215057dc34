"""Answer normalisation and correctness checks per exercise type.

Exercise rows carry free-form type tags written by content authors over the
years ("traduci", "Seleziona le coppie", ...). They are resolved once, through
an explicit alias table, into the closed :class:`schemas.ExerciseType`
enumeration; everything downstream works with the canonical value only.

Answer shapes accepted from the client:

* ``translate`` / ``listen-order``: ordered list of selected tokens.
* ``fill-blank``: exactly one selected option (bare string or one-element list).
* ``match-pairs``: list of two-word pairs, in any order.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from errors import InvalidAnswer
from schemas import ExerciseType

_LOGGER = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

EXERCISE_TYPE_ALIASES: Dict[str, ExerciseType] = {
    # canonical spellings
    "translate": ExerciseType.TRANSLATE,
    "fill-blank": ExerciseType.FILL_BLANK,
    "listen-order": ExerciseType.LISTEN_ORDER,
    "match-pairs": ExerciseType.MATCH_PAIRS,
    # variants
    "translation": ExerciseType.TRANSLATE,
    "fill_blank": ExerciseType.FILL_BLANK,
    "fill-in-blank": ExerciseType.FILL_BLANK,
    "fill in the blank": ExerciseType.FILL_BLANK,
    "listen_order": ExerciseType.LISTEN_ORDER,
    "match_pairs": ExerciseType.MATCH_PAIRS,
    "pairs": ExerciseType.MATCH_PAIRS,
    # legacy Italian tags stored by the first content release
    "traduci": ExerciseType.TRANSLATE,
    "completa la frase": ExerciseType.FILL_BLANK,
    "seleziona ciò che senti": ExerciseType.LISTEN_ORDER,
    "seleziona cio che senti": ExerciseType.LISTEN_ORDER,
    "seleziona ci√≤ che senti": ExerciseType.LISTEN_ORDER,
    "seleziona le coppie": ExerciseType.MATCH_PAIRS,
    "completa_frase": ExerciseType.FILL_BLANK,
    "seleziona_che_state": ExerciseType.LISTEN_ORDER,
    "seleziona_coppie": ExerciseType.MATCH_PAIRS,
}


def _normalise_tag(tag: Any) -> str:
    return _WHITESPACE.sub(" ", str(tag or "")).strip().lower()


def resolve_exercise_type(tag: Any) -> Optional[ExerciseType]:
    """Map a stored type tag onto the canonical enumeration, or ``None``."""

    if isinstance(tag, ExerciseType):
        return tag
    return EXERCISE_TYPE_ALIASES.get(_normalise_tag(tag))


@dataclass(frozen=True)
class Judgement:
    correct: bool
    stored_answer: str
    invalid: bool = False
    message: Optional[str] = None


def _fold(text: str) -> str:
    return text.casefold()


def _serialise_raw(answer: Any) -> str:
    try:
        return json.dumps(answer, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(answer)


# ----- shape validation ---------------------------------------------------

def _token_list(answer: Any) -> List[str]:
    if not isinstance(answer, (list, tuple)):
        raise InvalidAnswer("expected an ordered list of selected words")
    if not answer:
        raise InvalidAnswer("no words selected")
    if not all(isinstance(token, str) for token in answer):
        raise InvalidAnswer("every selected word must be a string")
    return list(answer)


def _single_option(answer: Any) -> str:
    if isinstance(answer, str):
        answer = [answer]
    if isinstance(answer, (list, tuple)):
        if len(answer) == 1 and isinstance(answer[0], str):
            if not answer[0].strip():
                raise InvalidAnswer("no option selected")
            return answer[0]
        raise InvalidAnswer(f"exactly one option must be selected, got {len(answer)}")
    raise InvalidAnswer("expected a single selected option")


def _pair_list(answer: Any) -> List[FrozenSet[str]]:
    if not isinstance(answer, (list, tuple)) or not answer:
        raise InvalidAnswer("expected a list of word pairs")
    pairs: List[FrozenSet[str]] = []
    for pair in answer:
        if (
            not isinstance(pair, (list, tuple))
            or len(pair) != 2
            or not all(isinstance(word, str) for word in pair)
        ):
            raise InvalidAnswer("every pair must contain exactly two words")
        pairs.append(frozenset(pair))
    return pairs


def _solution_pairs(solution: str) -> Optional[List[FrozenSet[str]]]:
    try:
        mapping = json.loads(solution)
    except (TypeError, ValueError):
        return None
    if not isinstance(mapping, dict):
        return None
    return [frozenset((str(key), str(value))) for key, value in mapping.items()]


# ----- comparators --------------------------------------------------------

def _judge_tokens(answer: Any, solution: str) -> Judgement:
    sentence = " ".join(_token_list(answer))
    return Judgement(correct=_fold(sentence) == _fold(solution), stored_answer=sentence)


def _judge_single(answer: Any, solution: str) -> Judgement:
    option = _single_option(answer)
    return Judgement(correct=_fold(option) == _fold(solution), stored_answer=option)


def _judge_pairs(answer: Any, solution: str) -> Judgement:
    user_pairs = _pair_list(answer)
    stored = _serialise_raw(sorted(sorted(pair) for pair in answer))
    expected = _solution_pairs(solution)
    if expected is None:
        _LOGGER.warning("match-pairs solution is not a JSON object: %.80s", solution)
        return Judgement(correct=False, stored_answer=stored)
    correct = len(user_pairs) == len(expected) and set(user_pairs) == set(expected)
    return Judgement(correct=correct, stored_answer=stored)


_COMPARATORS: Dict[ExerciseType, Callable[[Any, str], Judgement]] = {
    ExerciseType.TRANSLATE: _judge_tokens,
    ExerciseType.LISTEN_ORDER: _judge_tokens,
    ExerciseType.FILL_BLANK: _judge_single,
    ExerciseType.MATCH_PAIRS: _judge_pairs,
}


def judge_answer(exercise_type: ExerciseType, answer: Any, solution: str) -> Judgement:
    """Score ``answer`` against ``solution``.

    Raises :class:`errors.InvalidAnswer` when the answer does not have the
    shape ``exercise_type`` expects.
    """

    comparator = _COMPARATORS[ExerciseType(exercise_type)]
    return comparator(answer, solution)


def judge_or_reject(exercise_type: ExerciseType, answer: Any, solution: str) -> Judgement:
    """Like :func:`judge_answer`, but a malformed answer becomes an incorrect judgement."""

    try:
        return judge_answer(exercise_type, answer, solution)
    except InvalidAnswer as exc:
        return Judgement(
            correct=False,
            stored_answer=_serialise_raw(answer),
            invalid=True,
            message=str(exc),
        )
