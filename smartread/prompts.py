ANALYZE_SELECTION = """Task: Provide a concise literature analysis of the selected text in Chinese.

Selected Text: "{text}"
Context: {context}...

Guidelines:
1. NO Fluff: do not use intro phrases. Start directly.
2. Structure:
   - Meaning: Explanation (1-2 sentences).
   - Expression: Technique/Emotion analysis.
3. Style: Suitable for {grade} school.
"""


TEACHER_SCRIPT = """Task: Rewrite this literature analysis into a spoken teacher's explanation.
Original: "{original}"
Analysis: "{analysis}"
Tone: Gentle, educational. No brackets. Limit to 300 Chinese characters.
"""


OUTLINE_EXPLANATION = """Role: A kind literature teacher.
Task: Expand this outline point from a reading guide into a spoken "lecture" (3-5 sentences).
Article: {article_title}
Section: {title}
Original Content: "{content}"
Instruction: Make it engaging, educational, and explain the significance. Limit to 400 characters.
"""


PROOFREAD = """Role: Professional Chinese Text Editor.
Task: Standardize the provided Chinese text formatting.
Text: "{text}"

Strict rules:
1. Return ONLY the formatted text. No explanations.
2. Do not rewrite or summarize the content.
3. Formatting:
   - Each paragraph starts with two full-width spaces.
   - Use full-width Chinese punctuation.
   - Merge broken lines mid-sentence.
   - Separate paragraphs with a blank line.
"""


EXTRACT_VOCABULARY = """Identify 6-8 challenging vocabulary words from: "{text}..."
For each word give pinyin, a definition, part of speech, difficulty (1-3),
an example sentence, a hint on how the article uses it, and the sentence it appears in.
Output JSON."""


VOCAB_QUIZ = """Create a 4-6 question quiz (JSON) for these words: {words}.
Include multiple choice ("choice") and true/false ("judge") questions.
For judge questions the correctAnswer must be "true" or "false".
For choice questions the correctAnswer must be the exact text of one option."""


VIDEO_SCRIPT = """You are an expert Chinese literature designer. Analyze the article structure and provide a 6-dimensional guided reading outline:
intro (lead-in), framework (article structure), highlights (key structural highlights),
emotion (emotional arc), theme (core theme), transfer (transfer/extension).

Article Content: "{content}..."

JSON Object only.
"""


PINYIN = 'Provide pinyin for this text. Return pinyin only: "{text}"'


WORKSHOP = """Based on the article, vocab list, and reading notes, create a language exercise.
Article: {content}
Vocab: {words}
Notes: {notes}

Requirements:
1. clozeText: short summary with 3-5 blanks. Blank format: <input type="text" data-answer="answer" />
2. originalClozeText: same text with blanks at key vocab/expressions (at least 5).
3. writingPrompt: one writing prompt based on the article theme.
4. writingTips: 3 writing tips.

Return JSON.
"""


ENRICH_VOCABULARY = (
    "Provide detailed definition, pinyin, part of speech, difficulty (1-3), "
    "and example sentence for: {words}. Return JSON."
)


WRITING_COACH_SYSTEM = """You are a Chinese writing tutor helping a student with the prompt: {prompt}.
Reference article (truncated): {article}
Current draft: {draft}
Goal: encourage, guide, or help refine the draft.
If you rewrite content for the student, return it in the JSON field draftContent.
"""


WRITING_COACH_TURN = "History: {history} \nStudent query/content: {query}"


COVER_IMAGE = (
    'Create a 16:9 cover image for article "{title}". '
    "Style: Chinese aesthetic or modern illustration. Content hint: {hint}"
)
