"""Prompt templates for the metered note operations."""

OCR_PROMPT = (
    "Extract all text from this handwritten notebook image. Preserve the structure, "
    "line breaks, and formatting as much as possible. Return only the extracted text "
    "without any additional commentary."
)

CLEAN_PROMPT = (
    "You are a text cleaning assistant. Clean and format the following handwritten text. "
    "Fix grammar, spelling, and formatting. Preserve the original meaning and structure. "
    "Return only the cleaned text."
)

TITLE_PROMPT = (
    "Generate a concise, descriptive title (3-8 words) for the following text. "
    "Return only the title, nothing else:"
)

TAGS_PROMPT = (
    "Analyze the following text and generate 3-5 relevant tags (single words or short phrases). "
    "Return only a comma-separated list of tags, nothing else:"
)

SUMMARY_PROMPTS = {
    "short": "Provide a brief 2-3 sentence summary of the following text:",
    "bullets": "Summarize the following text as bullet points:",
    "key_ideas": "Extract the key ideas and main points from the following text:",
}

REWRITE_PROMPTS = {
    "professional": (
        "Rewrite the following text in a professional, formal tone while preserving all key information:"
    ),
    "study_notes": (
        "Rewrite the following text as concise study notes, focusing on key concepts and facts:"
    ),
    "bullets": "Rewrite the following text as well-organized bullet points:",
}

TITLE_INPUT_CHARS = 1000
TAGS_INPUT_CHARS = 1500
MAX_TAGS = 5
UNTITLED = "Untitled Note"
