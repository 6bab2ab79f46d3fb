# attendance_backend/db/errors.py

class StoreError(Exception):
    """Depolama katmanı için genel hata sınıfı."""
    pass


class DuplicateSessionCodeError(StoreError):
    """Oturum kodu, mevcut bir oturumun koduyla çakıştığında fırlatılır."""
    pass


class DuplicateAttendanceError(StoreError):
    """Aynı öğrenci ve oturum için ikinci bir kayıt eklenmek istendiğinde fırlatılır."""
    pass
