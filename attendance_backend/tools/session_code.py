# attendance_backend/tools/session_code.py

import random
import secrets
import string
from typing import Optional

DEFAULT_CODE_LENGTH = 6
DEFAULT_ALPHABET = string.ascii_uppercase + string.digits

_system_random = secrets.SystemRandom()


def generate_session_code(
    length: int = DEFAULT_CODE_LENGTH,
    alphabet: str = DEFAULT_ALPHABET,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Yoklama oturumu için kısa, tahmin edilemez bir kod üretir.

    Varsayılan kaynak işletim sisteminin CSPRNG'sidir. `choice`, indeksi
    `randbelow` ile reddetme örneklemesi yaparak seçtiğinden, alfabe boyutu
    ikinin kuvveti olmasa bile modulo sapması oluşmaz.

    Args:
        length (int): Kodun uzunluğu.
        alphabet (str): Karakterlerin seçileceği küme.
        rng (random.Random): Testlerde deterministik sonuç için enjekte edilebilir kaynak.

    Returns:
        str: `length` uzunluğunda, yalnızca `alphabet` karakterlerinden oluşan kod.

    Raises:
        ValueError: Uzunluk sıfır veya negatifse ya da alfabe boşsa.
    """
    if length <= 0:
        raise ValueError("Session code length must be greater than 0.")
    if not alphabet:
        raise ValueError("Alphabet must not be empty.")

    source = rng if rng is not None else _system_random
    return "".join(source.choice(alphabet) for _ in range(length))


def normalize_session_code(code: str) -> str:
    """Kodları karşılaştırma ve saklama için tek bir biçime getirir."""
    return code.strip().upper()
