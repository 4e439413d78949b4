"""リクエスト／レスポンスボディのXML変換"""
from typing import List, Optional, Union
from xml.etree import ElementTree as ET

from .errors import MAX_ERROR_SNIPPET, ErrorKind, StorageError

S3_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"


def _strip_namespace(element: ET.Element) -> ET.Element:
    for node in element.iter():
        if isinstance(node.tag, str) and node.tag.startswith("{"):
            node.tag = node.tag.split("}", 1)[1]
    return element


def Element(tag: str, namespace: Optional[str] = S3_NAMESPACE) -> ET.Element:
    """ルート要素を作成（既定で S3 の名前空間を付ける）"""
    if namespace:
        return ET.Element(tag, {"xmlns": namespace})
    return ET.Element(tag)


def SubElement(parent: ET.Element, tag: str, text: Optional[str] = None) -> ET.Element:
    element = ET.SubElement(parent, tag)
    if text is not None:
        element.text = text
    return element


def marshal(element: ET.Element) -> bytes:
    return ET.tostring(element, encoding="utf-8", xml_declaration=False)


def unmarshal(data: Union[bytes, str]) -> ET.Element:
    """XMLを解析し、名前空間を取り除いたルート要素を返す"""
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        return _strip_namespace(ET.fromstring(data))
    except ET.ParseError as e:
        raise StorageError(
            ErrorKind.INVALID_RESPONSE,
            f"unable to parse XML response: {e}",
            body=data[:MAX_ERROR_SNIPPET].decode("utf-8", "replace"),
        ) from e


def validate(data: Union[bytes, str], root_tag: str) -> bool:
    """ボディが指定したルート要素のXMLかどうか"""
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        root = _strip_namespace(ET.fromstring(data))
    except ET.ParseError:
        return False
    return root.tag == root_tag


def find_text(element: ET.Element, path: str, default: Optional[str] = None) -> Optional[str]:
    child = element.find(path)
    if child is None:
        return default
    return child.text if child.text is not None else ""


def find_all(element: ET.Element, path: str) -> List[ET.Element]:
    return element.findall(path)
