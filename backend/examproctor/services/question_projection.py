"""
Student-facing question projection.

The display copy of an exam never carries the answer key or explanations.
When options are shuffled, the display -> canonical option mapping is
returned separately so the caller can keep it server-side.
"""
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence


@dataclass
class ProjectedQuestions:
    questions: List[dict]
    # str(question_id) -> canonical option index for each display position
    option_maps: Dict[str, List[int]] = field(default_factory=dict)


def build_question_order(count: int, shuffle: bool, rng: Optional[random.Random] = None) -> List[int]:
    """Identity permutation of ``count`` question indices, shuffled in place when asked.

    ``random.shuffle`` is a Fisher-Yates shuffle, so every order is equally likely.
    """
    order = list(range(count))
    if shuffle:
        (rng or random).shuffle(order)
    return order


def project_questions(
    questions: Sequence,
    question_order: Sequence[int],
    shuffle_options: bool,
    rng: Optional[random.Random] = None,
) -> ProjectedQuestions:
    rng = rng or random
    projected = ProjectedQuestions(questions=[])

    for index in question_order:
        if index >= len(questions):
            continue
        question = questions[index]

        display_to_canonical = list(range(len(question.options)))
        if shuffle_options:
            rng.shuffle(display_to_canonical)
            projected.option_maps[str(question.id)] = display_to_canonical

        projected.questions.append({
            "number": len(projected.questions) + 1,
            "question_id": question.id,
            "question_text": question.question_text,
            "options": [question.options[i] for i in display_to_canonical],
            "marks": question.marks,
            "image_url": question.image_url,
        })

    return projected


def to_canonical_option(option_maps: Optional[dict], question_id: int, display_index: int) -> int:
    """Map an option index chosen on screen back to the stored option index."""
    mapping = (option_maps or {}).get(str(question_id))
    if mapping is None:
        return display_index
    if display_index >= len(mapping):
        raise IndexError(display_index)
    return mapping[display_index]


def to_display_option(option_maps: Optional[dict], question_id: int, canonical_index: int) -> int:
    mapping = (option_maps or {}).get(str(question_id))
    if mapping is None or canonical_index not in mapping:
        return canonical_index
    return mapping.index(canonical_index)
