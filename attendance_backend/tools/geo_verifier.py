# attendance_backend/tools/geo_verifier.py

import math

EARTH_RADIUS_METERS = 6_371_000.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """İki koordinat arasındaki büyük daire mesafesini metre cinsinden hesaplar."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    # Floating point noise can push `a` a hair above 1 for antipodal points.
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def is_within_radius(lat1: float, lon1: float, lat2: float, lon2: float, radius_meters: float) -> bool:
    """
    Birinci koordinatın, ikinci koordinat merkezli `radius_meters` yarıçaplı
    alanın içinde olup olmadığını kontrol eder.

    Enlem/boylam aralık kontrolü oturum oluşturulurken yapılır; bu fonksiyon
    girdilerin geçerli olduğunu varsayar.

    Returns:
        bool: Mesafe yarıçaptan küçük ya da eşitse True.
    """
    return haversine_distance(lat1, lon1, lat2, lon2) <= radius_meters
