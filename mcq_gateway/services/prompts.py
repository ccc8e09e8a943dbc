"""Prompt templates for MCQ generation."""

from __future__ import annotations

SYSTEM_PROMPT = (
    "You are an expert MCQ generator. You ONLY respond with a JSON array of MCQ objects as instructed."
)

_PROMPT_HEAD = """\
You are an expert MCQ generator. Create {count} high-quality multiple-choice questions that test users' understanding and knowledge of the concepts, facts, and ideas covered in the study material.

CRITICAL REQUIREMENTS:
1. Questions MUST test understanding and knowledge of concepts, facts, and ideas - NOT retrieval of specific text passages
2. Questions must be answerable from MEMORY and COMPREHENSION - users should NOT need to look back at the material
3. NEVER use words like "text", "document", "passage", "material", "according to", "mentioned", "stated", "explained", "notes", or "discusses" in the question itself
4. Focus on testing KNOWLEDGE and UNDERSTANDING of the subject matter, not memory of specific wording
5. Each question must have exactly 4 options
6. Include "answer_index" (0-based index) for the correct answer
"""

_ARRAY_FORMAT = """\
7. Respond ONLY with a valid JSON array - no markdown, no code blocks, no additional text
"""

_WRAPPED_FORMAT = """\
7. Respond with a valid JSON object containing a "mcqs" key with an array of MCQ objects - no markdown, no code blocks, no additional text
8. Format: {{"mcqs": [array of MCQ objects]}}
"""

_QUESTION_GUIDANCE = """
QUESTION TYPES TO INCLUDE:
- Factual knowledge questions (definitions, key facts, numbers, measurements)
- Conceptual understanding questions (processes, relationships, cause and effect)
- Application questions (using knowledge to solve problems or make predictions)
- Analysis questions (comparing, contrasting, identifying patterns)
- Questions about concepts, theories, formulas, or principles
- Questions about historical events, people, dates, or facts
- Questions about scientific processes, chemical reactions, or biological processes
- Questions about mathematical concepts, equations, or calculations

QUESTION TYPES TO STRICTLY AVOID:
- ANY questions that reference "text", "document", "passage", "material", "according to", "mentioned", "stated", "explained", "notes", "discusses"
- Questions asking "what does the image/figure/chart show" or "what is depicted in the image"
- Questions about document layout, structure, or organization
- Questions asking "where to find information" or "which page/section"
- Questions about study tips, learning strategies, or methodology
- Questions not directly covered in the provided material
- Questions requiring visual inspection of the material
- Questions about colors, shapes, or visual characteristics
- Questions asking users to identify something "in the picture" or "shown in the image"

GOOD EXAMPLES:
{{ "question": "What is the resolving power of a light microscope?", "options": ["0.2 nm", "200 nm", "2 μm", "0.2 μm"], "answer_index": 1 }}
{{ "question": "Which process occurs during photosynthesis?", "options": ["Glucose breakdown", "Carbon dioxide absorption", "Protein synthesis", "DNA replication"], "answer_index": 1 }}
{{ "question": "What is the chemical formula for water?", "options": ["H2O", "CO2", "NaCl", "O2"], "answer_index": 0 }}
{{ "question": "Who was the first African American to serve in the U.S. Senate?", "options": ["Frederick Douglass", "Hiram Revels", "Booker T. Washington", "W.E.B. Du Bois"], "answer_index": 1 }}
{{ "question": "How does the speed of sound change with temperature?", "options": ["Increases by 0.6 m/s per °C", "Decreases by 0.6 m/s per °C", "Remains constant", "Increases by 3.31 m/s per °C"], "answer_index": 0 }}

BAD EXAMPLES (DO NOT CREATE THESE):
{{ "question": "The text notes that sound waves are created by vibrations", "options": ["True", "False", "Sometimes", "Never"], "answer_index": 0 }}
{{ "question": "According to the text, what is the speed of sound?", "options": ["343 m/s", "300 m/s", "400 m/s", "250 m/s"], "answer_index": 0 }}
{{ "question": "The passage mentions that...", "options": ["Option A", "Option B", "Option C", "Option D"], "answer_index": 0 }}

IMPORTANT: Generate questions that test users' understanding and knowledge of the subject matter. Focus on concepts, facts, and ideas that users should know and understand, not on specific wording or references to the source material.
"""


def build_prompt(count: int, *, wrapped_output: bool = False) -> str:
    """Render the MCQ instruction block for ``count`` questions.

    ``wrapped_output`` asks for ``{"mcqs": [...]}`` instead of a bare array,
    for providers that enforce a JSON-object response format.
    """

    output_format = _WRAPPED_FORMAT if wrapped_output else _ARRAY_FORMAT
    template = _PROMPT_HEAD + output_format + _QUESTION_GUIDANCE
    return template.format(count=count)


def render_sections(chunks: list[str]) -> str:
    return "\n\n".join(
        f"STUDY MATERIAL SECTION {index}:\n{chunk}" for index, chunk in enumerate(chunks, start=1)
    )


__all__ = ["SYSTEM_PROMPT", "build_prompt", "render_sections"]
