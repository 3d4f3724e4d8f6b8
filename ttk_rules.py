# -*- coding: utf-8 -*-

# Основные правила расчёта TTK (описание для быстрых правок баланса):
# - Каждый выстрел независимо: промах (1 - q), попадание в тело q*(1 - h),
#   в голову q*h. Для слагов (headshot_modeled=False) только промах/попадание.
# - Падение урона: до near_radius_m множитель 1, между near и far линейно
#   до far_multiplier, дальше far_multiplier. Дистанция квантуется в мм:
#   mm = floor(d*1000 + MM_EPSILON), у M60 mm = round(d*1000).
# - Урон считается в целых "юнитах": юнит = НОД урона тела и головы,
#   порог смерти T = ceil(HP*den / (unit*num)), ограничен [1, Tmax].
# - Магазин: точная ДП по magazine_size выстрелам, выход - P(жив после n).
# - Перезарядка (empty reload): неудачный магазин стоит reload_seconds.
#   variant:
#     empty_reload   - E[выстрелов] = Eb/pKill, перезарядок (1-pKill)/pKill;
#     fixed_magazine - неудачный магазин всегда расходуется полностью;
#     capped         - один магазин без перезарядки (M134).
# - Первый выстрел в момент 0 (плюс startup_delay_seconds у пулемётов с раскруткой),
#   интервал между выстрелами dt = 60 / rounds_per_minute.
# NOTE: decimal constants are strings so they parse into exact Fractions.
# NOTE: pKill == 0 gives Ettk = +inf, not an error.

# Квантование дистанции в миллиметры.
MM_PER_METER = 1000
MM_EPSILON = 1e-9

# Способы округления дистанции.
DISTANCE_ROUNDING_MODES = ("floor", "round")

# Варианты расчёта без ограничения магазином.
TTK_VARIANTS = ("empty_reload", "fixed_magazine", "capped")

# Общее здоровье цели.
TARGET_HP = 350

# Таблица оружия: одна строка на оружие, значения воспроизводятся точно.
WEAPON_DEFS = {
    ".50 Akimbo": {
        "max_hp": TARGET_HP,
        "magazine_size": 14,
        "rounds_per_minute": 230,
        "body_damage": 44,
        "head_damage": 88,
        "near_radius_m": 32,
        "far_radius_m": 39,
        "far_multiplier": "0.5",
        "reload_seconds": "3.00",
        "variant": "empty_reload",
    },
    "ShAK-50": {
        "max_hp": TARGET_HP,
        "magazine_size": 20,
        "rounds_per_minute": 420,
        "body_damage": 30,
        "head_damage": 45,
        "near_radius_m": 15,
        "far_radius_m": 25,
        "far_multiplier": "0.65",
        "reload_seconds": "3.20",
        "variant": "empty_reload",
    },
    "M60": {
        "max_hp": TARGET_HP,
        "magazine_size": 70,
        "rounds_per_minute": 580,
        "body_damage": 20,
        "head_damage": 30,
        "near_radius_m": 25,
        "far_radius_m": 35,
        "far_multiplier": "0.5",
        "reload_seconds": "3.55",
        "variant": "empty_reload",
        "distance_rounding": "round",
    },
    "M134": {
        "max_hp": TARGET_HP,
        "magazine_size": 250,
        "rounds_per_minute": 1500,
        "body_damage": 11,
        "head_damage": "14.63",
        "near_radius_m": 30,
        "far_radius_m": 50,
        "far_multiplier": "0.4",
        "reload_seconds": 0,
        "startup_delay_seconds": "0.7",
        "variant": "capped",
    },
    "KS-23": {
        "max_hp": TARGET_HP,
        "magazine_size": 6,
        "rounds_per_minute": 73,
        "body_damage": 100,
        "head_damage": None,
        "near_radius_m": 18,
        "far_radius_m": 23,
        "far_multiplier": "0.7",
        "reload_seconds": "4.36",
        "variant": "empty_reload",
        "headshot_modeled": False,
    },
    "Lewis Gun": {
        "max_hp": TARGET_HP,
        "magazine_size": 47,
        "rounds_per_minute": 500,
        "body_damage": 23,
        "head_damage": "34.5",
        "near_radius_m": 35,
        "far_radius_m": 40,
        "far_multiplier": "0.67",
        "reload_seconds": "3.55",
        "variant": "empty_reload",
    },
    "BFR Titan": {
        "max_hp": TARGET_HP,
        "magazine_size": 5,
        "rounds_per_minute": "71.6",
        "body_damage": 90,
        "head_damage": 135,
        "near_radius_m": 30,
        "far_radius_m": 45,
        "far_multiplier": "0.7",
        "reload_seconds": "4.75",
        "variant": "fixed_magazine",
    },
}

# Поля, которые можно переопределить через weapon_overrides.json.
OVERRIDABLE_FIELDS = {
    "max_hp",
    "magazine_size",
    "rounds_per_minute",
    "body_damage",
    "head_damage",
    "near_radius_m",
    "far_radius_m",
    "far_multiplier",
    "reload_seconds",
    "startup_delay_seconds",
    "variant",
    "distance_rounding",
    "headshot_modeled",
}

# Память под ДП на один чанк (dp, new и временный массив сдвига по Tmax float64).
DP_ARRAYS_PER_POINT = 3
DP_BYTES_PER_CELL = 8
DEFAULT_CHUNK_MEMORY_BYTES = 256 * 1024 * 1024
CHUNK_MEMORY_ENV = "TTK_CHUNK_MEMORY_MB"

# Порог, после которого имеет смысл показывать прогресс по чанкам.
PROGRESS_MIN_POINTS = 50_000

# Сетка по умолчанию для ранжирования (q, h, дистанция).
DEFAULT_Q_RANGE = (0.10, 1.00, 46)
DEFAULT_H_RANGE = (0.00, 1.00, 46)
DEFAULT_DIST_RANGE = (0.0, 50.0, 51)

# Сколько мест в рейтинге и потолок разницы TTK между местами (секунды).
RANKING_DEPTH = 3
SPREAD_CAP_SECONDS = 2.0
