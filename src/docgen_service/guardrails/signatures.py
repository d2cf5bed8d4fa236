from __future__ import annotations

import dspy


class ScreenText(dspy.Signature):
    """
    Screen a piece of text against the given instructions.

    Answer with `flagged` and a confidence between 0.0 and 1.0 that the text violates them.
    """

    instructions: str = dspy.InputField(desc="What to flag.")
    context_json: str = dspy.InputField(desc="Compact JSON with conversation context, or an empty string.")
    text: str = dspy.InputField(desc="Text to screen.")

    flagged: bool = dspy.OutputField(desc="True if the text violates the instructions.")
    confidence: float = dspy.OutputField(desc="Confidence in [0.0, 1.0].")


class ModerateText(dspy.Signature):
    """
    Content moderation. Return only the categories (from the given list) that the text clearly falls under.
    """

    categories: list[str] = dspy.InputField(desc="Allowed moderation categories.")
    text: str = dspy.InputField(desc="Text to moderate.")

    flagged_categories: list[str] = dspy.OutputField(desc="Subset of `categories`; empty when nothing applies.")


class CheckGrounding(dspy.Signature):
    """
    Hallucination check. Compare each factual claim in the text with the reference material and
    report which claims are unsupported or contradicted.
    """

    reference_text: str = dspy.InputField(desc="Trusted reference material.")
    text: str = dspy.InputField(desc="Text whose claims should be verified.")

    flagged: bool = dspy.OutputField(desc="True if any claim is unsupported or contradicted.")
    confidence: float = dspy.OutputField(desc="Confidence in [0.0, 1.0].")
    reasoning: str = dspy.OutputField(desc="One or two sentences.")
    hallucination_type: str = dspy.OutputField(desc="'factual_error', 'unsupported_claim', or 'none'.")
    hallucinated_statements: list[str] = dspy.OutputField()
    verified_statements: list[str] = dspy.OutputField()


__all__ = ["CheckGrounding", "ModerateText", "ScreenText"]
