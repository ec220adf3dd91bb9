"""Gemini AI provider implementation."""

import ast
import logging
import re
import time
import google.generativeai as genai

from core.config import TARGETED_BATCH_SIZE
from core.interfaces import WordSupplier, AnalysisClient
from core.models import Attempt, Diagnosis

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TIER_GUIDANCE = {
    'easy': 'short (3-4 letters), very common, phonetically regular words',
    'medium': 'common words of 4-6 letters, may include blends and digraphs',
    'hard': 'words of 6-8 letters with letter combinations children often confuse'
}

WORD_PATTERN = re.compile(r"^[a-z]+$")


def format_history(attempts: list[Attempt]) -> str:
    if not attempts:
        return 'none yet'
    return '\n'.join(
        f"- shown '{a.word}', typed '{a.input}' ({'correct' if a.correct else f'{a.mistake_count} mistakes'})"
        for a in attempts
    )


class GeminiProvider(WordSupplier, AnalysisClient):
    """Gemini-backed word generation and letter-confusion analysis."""

    def __init__(self, api_key: str, model_name: str = 'gemini-2.0-flash'):
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model_name)
        self.model_name = model_name

    def _execute(self, prompt: str) -> tuple[str, int]:
        start_time = time.time()
        response = self.model.generate_content(prompt)
        end_time = time.time()
        ms = int((end_time - start_time) * 1000)
        return (response.text, ms)

    def _sanitize_literal(self, text: str, opening: str, closing: str) -> str:
        s = text[text.find(opening):text.rfind(closing)+1]
        s = s.replace('false', 'False')
        s = s.replace('true', 'True')
        s = s.replace('null', 'None')
        return s

    def _parse_literal(self, text: str, opening: str, closing: str):
        sanitized = self._sanitize_literal(text, opening, closing)
        try:
            return ast.literal_eval(sanitized)
        except (SyntaxError, ValueError) as e:
            logger.error(f"Failed to parse AI response: {e}")
            logger.error(f"Raw response:\n{text}")
            logger.error(f"Sanitized response:\n{sanitized}")

            if opening not in text:
                logger.error(f"Diagnosis: No opening '{opening}' found in response")
            elif closing not in text:
                logger.error(f"Diagnosis: No closing '{closing}' found in response")
            elif sanitized.count(opening) != sanitized.count(closing):
                logger.error(f"Diagnosis: Mismatched brackets - {opening} count: {sanitized.count(opening)}, "
                             f"{closing} count: {sanitized.count(closing)}")
            else:
                logger.error("Diagnosis: Unknown parsing issue - possibly malformed literal syntax")
            raise ValueError(f"Unparseable AI response: {e}") from e

    def _clean_word(self, text: str) -> str:
        tokens = (text or '').strip().split()
        word = tokens[0].strip('`"\'.!?,').lower() if tokens else ''
        if not WORD_PATTERN.match(word):
            raise ValueError(f"AI returned an invalid word: {text!r}")
        return word

    def next_word(self, session_id: str, username: str, therapist_code: str,
                  phase: str, difficulty_hint: str, history: list[Attempt]) -> str:
        guidance = TIER_GUIDANCE.get(difficulty_hint, TIER_GUIDANCE['easy'])
        used = ', '.join(a.word for a in history) if history else 'none'
        prompt = f"""
            You are choosing words for a typing exercise that screens children for
            dyslexia-related letter confusions (b/d, p/q, m/w, reversed letter order).

            Phase: {phase}
            Difficulty: {difficulty_hint} - {guidance}

            Words typed so far in this phase:
            {format_history(history)}

            Pick ONE English word that:
            - matches the difficulty above
            - is different from these already used words: {used}
            - in the initial phase, samples a different letter group than the previous words
            - is appropriate for a child

            Respond with ONLY the word in lowercase, no punctuation, no explanation.
        """
        response, ms = self._execute(prompt)
        word = self._clean_word(response)
        logger.info(f"Generated word '{word}' for {username} ({phase}, {difficulty_hint}) in {ms}ms")
        return word

    def targeted_batch(self, session_id: str, username: str, therapist_code: str,
                       diagnosis: Diagnosis) -> list[str]:
        letters = ', '.join(diagnosis.problematic_letters) if diagnosis.problematic_letters else 'none identified'
        pairs = ', '.join(f"'{p['confuses']}' with '{p['with']}'" for p in diagnosis.confusion_pairs) or 'none identified'
        prompt = f"""
            A child just finished a typing screening. The analysis found:
            - Problem letters: {letters}
            - Confusion pairs: {pairs}

            Give {TARGETED_BATCH_SIZE} English words for targeted practice that:
            - contain the problem letters, ideally in positions where they were confused
            - go from easiest to hardest
            - are appropriate for a child, 3-8 letters each

            Respond with ONLY a Python list of lowercase strings, for example:
            ['bed', 'dab', 'bird', 'drab', 'double']
        """
        response, ms = self._execute(prompt)
        words = self._parse_literal(response, '[', ']')
        if not isinstance(words, (list, tuple)):
            raise ValueError(f"Targeted words response is not a list: {type(words)}")
        cleaned = []
        for w in words:
            try:
                cleaned.append(self._clean_word(str(w)))
            except ValueError:
                logger.warning(f"Skipping invalid targeted word: {w!r}")
        if not cleaned:
            raise ValueError("AI returned no usable targeted words")
        logger.info(f"Generated {len(cleaned)} targeted words for {username} in {ms}ms: {cleaned}")
        return cleaned

    def analyze(self, session_id: str, username: str, therapist_code: str,
                attempts: list[Attempt]) -> Diagnosis:
        prompt = f"""
            You are helping a therapist screen a child for dyslexia-related letter confusions.

            The child was shown each word and typed it:
            {format_history(attempts)}

            Compare each typed word with the target letter by letter. Look for:
            - letter reversals (b/d, p/q, n/u)
            - visual confusions (m/w, h/n)
            - phonetic confusions (f/v, s/z)
            - transposed letter order

            Respond with a Python dictionary:
            {{
                'problematicLetters': list of single lowercase letters the child struggled with,
                'confusionPatterns': list of {{'confuses': letter typed, 'with': letter expected}},
                'recommendations': list of short suggestions for the therapist
            }}

            Use empty lists when nothing was found. Return ONLY the dictionary, no other text,
            no markdown formatting.
        """
        response, ms = self._execute(prompt)
        data = self._parse_literal(response, '{', '}')
        if not isinstance(data, dict):
            raise ValueError(f"Analysis response is not a dict: {type(data)}")

        missing_keys = [k for k in ('problematicLetters', 'confusionPatterns') if k not in data]
        if missing_keys:
            logger.warning(f"AI analysis missing keys: {missing_keys}")
            logger.warning(f"Raw response:\n{response}")

        diagnosis = Diagnosis.from_dict(data)
        logger.info(f"Analysis for {username} in {ms}ms: {diagnosis}")
        return diagnosis
