"""ヘッダー・クエリパラメータ用の順序付きマルチマップ"""
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

PairsLike = Union["ParamList", Mapping[str, str], Iterable[Tuple[str, str]], None]


class ParamList:
    """キーの重複を許すキー/値ペアの列

    同じキーの値は追加順を保持する。
    """

    _case_insensitive = False

    def __init__(self, pairs: PairsLike = None):
        self._items: List[Tuple[str, str]] = []
        if pairs is not None:
            self.extend(pairs)

    def _match(self, left: str, right: str) -> bool:
        if self._case_insensitive:
            return left.lower() == right.lower()
        return left == right

    def add(self, key: str, value: str) -> None:
        self._items.append((key, "" if value is None else str(value)))

    def extend(self, pairs: PairsLike) -> None:
        if pairs is None:
            return
        if isinstance(pairs, ParamList):
            items: Iterable[Tuple[str, str]] = pairs.items()
        elif isinstance(pairs, Mapping):
            items = pairs.items()
        else:
            items = pairs
        for key, value in items:
            self.add(key, value)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        for k, v in self._items:
            if self._match(k, key):
                return v
        return default

    def get_all(self, key: str) -> List[str]:
        return [v for k, v in self._items if self._match(k, key)]

    def remove(self, key: str) -> None:
        self._items = [(k, v) for k, v in self._items if not self._match(k, key)]

    def set(self, key: str, value: str) -> None:
        """既存の値を全て置き換える"""
        self.remove(key)
        self.add(key, value)

    def items(self) -> List[Tuple[str, str]]:
        return list(self._items)

    def keys(self) -> List[str]:
        return [k for k, _ in self._items]

    def copy(self) -> "ParamList":
        return self.__class__(self._items)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and any(self._match(k, key) for k, _ in self._items)

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParamList):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._items!r})"


class Headers(ParamList):
    """HTTPヘッダー（キーは大文字小文字を区別しない）"""

    _case_insensitive = True

    def to_dict(self) -> Dict[str, str]:
        """送信用に同名ヘッダーをカンマ区切りで1つにまとめる"""
        merged: Dict[str, str] = {}
        names: Dict[str, str] = {}
        for key, value in self._items:
            lower = key.lower()
            if lower == "content-encoding" and not value:
                continue
            if lower in names:
                previous = merged[names[lower]]
                if lower == "content-encoding" and value in previous.split(","):
                    continue
                merged[names[lower]] = f"{previous},{value}"
            else:
                names[lower] = key
                merged[key] = value
        return merged


class QueryParams(ParamList):
    """URLクエリパラメータ（キーは大文字小文字を区別する）"""


def merge(first: PairsLike, second: PairsLike, cls=None):
    """2つのマルチマップを連結した新しいマルチマップを返す"""
    if cls is None:
        cls = first.__class__ if isinstance(first, ParamList) else ParamList
    result = cls()
    result.extend(first)
    result.extend(second)
    return result


def set_default(params: ParamList, key: str, value: str) -> ParamList:
    """キーが無い場合だけ値を追加した新しいマルチマップを返す"""
    result = params.copy()
    if key not in result:
        result.add(key, value)
    return result
