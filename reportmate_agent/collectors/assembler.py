"""
Fonctions de mise en forme des résultats de collecte

Fonctions pures utilisées par les modules après la jonction des
sous-collecteurs : calculs dérivés, tables de correspondance et
normalisation des valeurs brutes.
"""

import math
import re
from typing import Any, Dict, Mapping, Optional, Union

Number = Union[int, float]

_MISSING = object()

_ARCHITECTURES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "arm64": "ARM64",
    "arm64e": "ARM64",
    "aarch64": "ARM64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
}

_DESKTOP_MODEL_IDS = frozenset({
    "mac16,10", "mac16,11", "mac14,3", "mac14,12",
    "mac13,1", "mac13,2", "mac14,13", "mac14,14", "mac14,8",
    "mac15,4", "mac15,5", "mac16,3"
})

_LAPTOP_MODEL_IDS = frozenset({
    "mac16,1", "mac16,2", "mac16,5", "mac16,6", "mac16,7", "mac16,8",
    "mac15,12", "mac15,13", "mac14,2", "mac14,15", "mac14,5", "mac14,6", "mac14,7",
    "mac15,3", "mac15,6", "mac15,7", "mac15,8", "mac15,9", "mac15,10", "mac15,11"
})

# Année de sortie par identifiant de modèle
MODEL_YEARS = {
    # Mac mini
    "Mac16,11": "2024",
    "Mac16,10": "2024",
    "Mac14,12": "2023",
    "Mac14,3": "2023",
    "Macmini9,1": "2020",
    # MacBook Pro
    "Mac16,1": "2024",
    "Mac16,2": "2024",
    "Mac16,5": "2024",
    "Mac16,6": "2024",
    "Mac15,3": "2023",
    "Mac15,6": "2023",
    "Mac15,8": "2023",
    "Mac14,5": "2023",
    "Mac14,6": "2023",
    "Mac14,7": "2022",
    # MacBook Air
    "Mac15,12": "2024",
    "Mac15,13": "2024",
    "Mac14,15": "2023",
    "Mac14,2": "2022",
    "MacBookAir10,1": "2020",
    # iMac
    "Mac16,3": "2024",
    "Mac15,4": "2023",
    "iMac21,1": "2021",
    "iMac21,2": "2021",
    # Mac Studio
    "Mac15,5": "2024",
    "Mac14,13": "2023",
    "Mac14,14": "2023",
    "Mac13,1": "2022",
    "Mac13,2": "2022",
    # Mac Pro
    "Mac14,8": "2023",
}

_FIRMWARE_PATTERN = re.compile(r"Version\s+([0-9.]+)\s+\(Build\s+([A-Z0-9]+)\)")

_VENDOR_SUFFIXES = (", Inc.", " Inc.", " Inc", " Corporation", " Corp.", " LLC", " Ltd.")


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def percentage(part: Any, total: Any) -> float:
    """
    Calcule un pourcentage borné à [0, 100]

    Un dénominateur nul, négatif ou non numérique donne 0 : le résultat
    n'est jamais NaN ni infini.

    Args:
        part: Valeur partielle
        total: Valeur totale

    Returns:
        float: Pourcentage entre 0 et 100
    """
    part_value = _as_number(part)
    total_value = _as_number(total)

    if part_value is None or total_value is None or total_value <= 0 or part_value <= 0:
        return 0.0

    return min(100.0, part_value * 100.0 / total_value)


def lookup(table: Mapping[Any, Any], key: Any, fallback: Any = _MISSING) -> Any:
    """
    Recherche déterministe dans une table de correspondance

    Args:
        table: Table clé -> valeur
        key: Clé recherchée
        fallback: Valeur si absente (par défaut, la clé elle-même)

    Returns:
        Valeur trouvée, fallback, ou la clé inchangée
    """
    if key in table:
        return table[key]
    if fallback is _MISSING:
        return key
    return fallback


def rename_fields(mapping: Mapping[str, Any], renames: Mapping[str, str]) -> Dict[str, Any]:
    """
    Renomme des clés en conservant l'ordre d'origine

    Args:
        mapping: Données source
        renames: Ancien nom -> nouveau nom

    Returns:
        dict: Nouveau mapping
    """
    return {renames.get(key, key): value for key, value in mapping.items()}


def normalize_architecture(raw: str) -> str:
    """Normalise une architecture (x86_64 -> x64, arm64 -> ARM64...)"""
    if not raw:
        return raw
    return _ARCHITECTURES.get(raw.strip().lower(), raw)


def determine_form_factor(model_id: str, model_name: str = "") -> str:
    """
    Détermine le format de la machine (laptop, desktop ou unknown)

    Le nom commercial est prioritaire, puis le préfixe de l'identifiant,
    puis les tables d'identifiants Mac##,##.

    Args:
        model_id: Identifiant de modèle (ex: "MacBookPro18,3", "Mac14,3")
        model_name: Nom commercial (ex: "Mac mini")

    Returns:
        str: "laptop", "desktop" ou "unknown"
    """
    name = (model_name or "").lower()
    identifier = (model_id or "").lower()

    if "macbook" in name:
        return "laptop"
    if any(keyword in name for keyword in ("mac mini", "mac studio", "mac pro", "imac")):
        return "desktop"

    if identifier.startswith("macbook"):
        return "laptop"
    if identifier.startswith(("macmini", "macpro", "imac")):
        return "desktop"

    if identifier in _DESKTOP_MODEL_IDS:
        return "desktop"
    if identifier in _LAPTOP_MODEL_IDS:
        return "laptop"

    return "unknown"


def model_year(model_id: str) -> str:
    """Retourne l'année de sortie d'un modèle ("" si inconnue)"""
    return MODEL_YEARS.get(model_id or "", "")


def format_bytes(bytes_value: Any) -> str:
    """
    Formate une valeur en octets en format lisible

    Args:
        bytes_value: Valeur en octets

    Returns:
        str: Valeur formatée (ex: "1.5 GB"), "N/A" si invalide
    """
    if bytes_value is None:
        return "N/A"

    try:
        size = float(int(bytes_value))
    except (ValueError, TypeError):
        return "N/A"

    units = ['B', 'KB', 'MB', 'GB', 'TB', 'PB']
    unit_index = 0

    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1

    return f"{size:.1f} {units[unit_index]}"


def parse_firmware_version(firmware: str) -> str:
    """
    Convertit "Version 17.0 (Build 21A329)" en "17.0.21A329"

    Retourne la chaîne d'origine si le format n'est pas reconnu.
    """
    if not firmware:
        return firmware
    match = _FIRMWARE_PATTERN.search(firmware)
    if match:
        return f"{match.group(1)}.{match.group(2)}"
    return firmware


def strip_vendor_suffix(vendor: str) -> str:
    """Supprime le suffixe juridique d'un fabricant ("Apple Inc." -> "Apple")"""
    if not vendor:
        return vendor
    vendor = vendor.strip()
    for suffix in _VENDOR_SUFFIXES:
        if vendor.endswith(suffix):
            return vendor[:-len(suffix)].strip()
    return vendor


def to_bool(value: Any, default: bool = False) -> bool:
    """Convertit une valeur texte d'osquery/bash en booléen"""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("1", "true", "yes", "on", "enabled"):
            return True
        if text in ("0", "false", "no", "off", "disabled", ""):
            return False
    return default
