"""Turn OCR text and voice transcripts into draft expense fields."""
import re
from typing import Optional

from models import EXPENSE_CATEGORIES

RECEIPT_AMOUNT = re.compile(r"[$€£]?\s*(\d+\.?\d{0,2})")
VOICE_AMOUNT = re.compile(r"(?:₹|rs\.?\s*|rupees\s*)?(\d+(?:\.\d+)?)")
FILLER_WORDS = re.compile(r"\b(spent|for|on|of|the|a|an)\b", re.IGNORECASE)
TITLE_LIMIT = 50


def parse_receipt(text: str) -> dict:
    """Largest number on the receipt is taken as the total; the opening text as the title."""
    cleaned = re.sub(r"\s+", " ", (text or "").strip())

    amounts = [float(m) for m in RECEIPT_AMOUNT.findall(cleaned)]
    amount: Optional[float] = max(amounts) if amounts else None

    title = cleaned[:TITLE_LIMIT].strip() or "Receipt"
    return {"title": title, "amount": amount}


def parse_voice(transcript: str) -> dict:
    """Handles phrases like "Spent 120 on transport" or "Grocery 350 food"."""
    transcript = transcript or ""
    text = transcript.lower()

    amount = None
    title = transcript
    match = VOICE_AMOUNT.search(text)
    if match:
        amount = float(match.group(1))
        title = re.sub(re.escape(match.group(0)), "", title, count=1, flags=re.IGNORECASE).strip()

    category = next((c for c in EXPENSE_CATEGORIES if c.lower() in text), None)
    if category:
        title = re.sub(re.escape(category), "", title, count=1, flags=re.IGNORECASE).strip()

    title = re.sub(r"\s+", " ", FILLER_WORDS.sub("", title)).strip()
    return {"title": title, "amount": amount, "category": category}
