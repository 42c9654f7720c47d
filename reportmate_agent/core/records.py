"""
Modèle de données normalisé de l'agent ReportMate

Toute sortie de backend est convertie en Record, un type somme étiqueté :
- Scalar : chaîne, nombre, booléen ou null
- ListRecord : séquence ordonnée de Record
- MapRecord : mapping ordonné clé -> Record

L'extraction d'un champ passe toujours par un accesseur typé qui prend
une valeur par défaut explicite, retournée si le champ est absent ou
d'un type inattendu.
"""

from typing import Any, Dict, Iterator, List, Optional, Union

ScalarValue = Union[str, int, float, bool, None]

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on", "enabled"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off", "disabled", ""})


class Record:
    """Classe de base du type somme"""

    @staticmethod
    def from_python(value: Any) -> "Record":
        """
        Convertit une valeur Python (issue de json.loads) en Record

        Args:
            value: dict, list ou scalaire

        Returns:
            Record: Représentation étiquetée
        """
        if isinstance(value, Record):
            return value
        if isinstance(value, dict):
            return MapRecord({str(k): Record.from_python(v) for k, v in value.items()})
        if isinstance(value, (list, tuple)):
            return ListRecord([Record.from_python(v) for v in value])
        if value is None or isinstance(value, (str, int, float, bool)):
            return Scalar(value)
        return Scalar(str(value))

    def to_python(self) -> Any:
        raise NotImplementedError

    def __eq__(self, other) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return type(self) is type(other) and self.to_python() == other.to_python()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.to_python()!r})"


class Scalar(Record):
    """Valeur scalaire"""

    def __init__(self, value: ScalarValue):
        self.value = value

    def to_python(self) -> ScalarValue:
        return self.value


class ListRecord(Record):
    """Séquence ordonnée de Record"""

    def __init__(self, elements: Optional[List[Record]] = None):
        self.elements = list(elements or [])

    def __iter__(self) -> Iterator[Record]:
        return iter(self.elements)

    def __len__(self) -> int:
        return len(self.elements)

    def maps(self) -> List["MapRecord"]:
        """Retourne uniquement les éléments de type MapRecord"""
        return [element for element in self.elements if isinstance(element, MapRecord)]

    def to_python(self) -> List[Any]:
        return [element.to_python() for element in self.elements]


class MapRecord(Record):
    """Mapping ordonné de champs"""

    def __init__(self, fields: Optional[Dict[str, Record]] = None):
        self.fields: Dict[str, Record] = dict(fields or {})

    def __contains__(self, key: str) -> bool:
        return key in self.fields

    def __len__(self) -> int:
        return len(self.fields)

    def keys(self) -> List[str]:
        return list(self.fields.keys())

    def get(self, key: str) -> Optional[Record]:
        return self.fields.get(key)

    def to_python(self) -> Dict[str, Any]:
        return {key: value.to_python() for key, value in self.fields.items()}

    def _scalar(self, key: str) -> Optional[Scalar]:
        value = self.fields.get(key)
        if isinstance(value, Scalar):
            return value
        return None

    def get_str(self, key: str, default: str = "") -> str:
        """
        Extrait un champ texte

        Les nombres sont convertis en texte ; null, booléens et structures
        retournent la valeur par défaut.
        """
        scalar = self._scalar(key)
        if scalar is None:
            return default

        value = scalar.value
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return default

    def get_int(self, key: str, default: int = 0) -> int:
        """
        Extrait un champ entier

        osquery retourne toutes les colonnes en texte : les chaînes
        numériques sont donc converties.
        """
        scalar = self._scalar(key)
        if scalar is None:
            return default

        value = scalar.value
        if isinstance(value, bool):
            return default
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return int(value)
        if isinstance(value, str):
            text = value.strip()
            try:
                return int(text)
            except ValueError:
                try:
                    return int(float(text))
                except ValueError:
                    return default
        return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        """Extrait un champ numérique décimal"""
        scalar = self._scalar(key)
        if scalar is None:
            return default

        value = scalar.value
        if isinstance(value, bool):
            return default
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                return default
        return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Extrait un champ booléen ("1", "true", "yes", "enabled"...)"""
        scalar = self._scalar(key)
        if scalar is None:
            return default

        value = scalar.value
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
        return default

    def get_list(self, key: str) -> ListRecord:
        """Extrait une liste (liste vide si absente ou d'un autre type)"""
        value = self.fields.get(key)
        if isinstance(value, ListRecord):
            return value
        return ListRecord()

    def get_map(self, key: str) -> "MapRecord":
        """Extrait un mapping imbriqué (mapping vide si absent ou d'un autre type)"""
        value = self.fields.get(key)
        if isinstance(value, MapRecord):
            return value
        return MapRecord()


class NormalizedRecord:
    """
    Forme canonique consommée par tous les collecteurs

    Exactement une des deux formes :
    - un enregistrement unique (mapping plat)
    - un mapping contenant uniquement la clé "items" (séquence de mappings)

    Les appelants doivent tester is_items avant de traiter le résultat
    comme un enregistrement unique, ou utiliser rows()/first().
    """

    ITEMS_KEY = "items"

    def __init__(self, record: MapRecord, is_items: bool):
        self._record = record
        self._is_items = is_items

    @classmethod
    def single(cls, record: Union[MapRecord, Dict[str, Any]]) -> "NormalizedRecord":
        if not isinstance(record, MapRecord):
            record = Record.from_python(record)
        return cls(record, is_items=False)

    @classmethod
    def from_items(cls, rows: List[Any]) -> "NormalizedRecord":
        elements: List[Record] = []
        for row in rows:
            converted = Record.from_python(row)
            if not isinstance(converted, MapRecord):
                # Chaque élément doit être un mapping plat
                converted = MapRecord({"value": converted})
            elements.append(converted)
        return cls(MapRecord({cls.ITEMS_KEY: ListRecord(elements)}), is_items=True)

    @classmethod
    def raw_output(cls, text: str) -> "NormalizedRecord":
        return cls(MapRecord({"output": Scalar(text)}), is_items=False)

    @property
    def is_items(self) -> bool:
        return self._is_items

    @property
    def record(self) -> MapRecord:
        return self._record

    def rows(self) -> List[MapRecord]:
        """
        Retourne les lignes sous forme de liste

        Returns:
            list: Les éléments de "items", ou l'enregistrement unique seul
        """
        if self._is_items:
            return self._record.get_list(self.ITEMS_KEY).maps()
        return [self._record]

    def first(self) -> MapRecord:
        """Retourne l'enregistrement unique, ou la première ligne (mapping vide si aucune)"""
        rows = self.rows()
        return rows[0] if rows else MapRecord()

    def to_python(self) -> Dict[str, Any]:
        return self._record.to_python()

    def __eq__(self, other) -> bool:
        if not isinstance(other, NormalizedRecord):
            return NotImplemented
        return self._is_items == other._is_items and self.to_python() == other.to_python()

    def __repr__(self) -> str:
        shape = "items" if self._is_items else "single"
        return f"<NormalizedRecord({shape}, {self.to_python()!r})>"
