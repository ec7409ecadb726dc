"""BeautifulSoup を包む最小限の木操作インターフェース。

サニタイザーとトランスフォーマーはこのモジュールの操作だけを使い、
パーサー固有の API には直接触れません。
"""

from __future__ import annotations

from typing import Callable, Mapping

from bs4 import BeautifulSoup
from bs4.element import NavigableString, Script, Stylesheet, Tag

Element = Tag

_RAW_TEXT_CONTAINERS = {"style": Stylesheet, "script": Script}

# 既知の HTML タグではないため、断片内の余分な閉じタグ (</div> など) で閉じられない
ROOT_TAG = "mirror-root"


class HtmlTree:
    """合成ルート要素の下に HTML 断片を保持する木。"""

    def __init__(self, soup: BeautifulSoup, root: Tag) -> None:
        self._soup = soup
        self._root = root

    @classmethod
    def parse(cls, html: str, root_id: str = "__mirror_root") -> "HtmlTree":
        soup = BeautifulSoup(f'<{ROOT_TAG} id="{root_id}">{html}</{ROOT_TAG}>', "lxml", multi_valued_attributes=None)
        root = soup.find(id=root_id)
        if not isinstance(root, Tag):
            # 断片が空要素として解釈された場合でも空のルートで続行する
            root = soup.new_tag(ROOT_TAG, attrs={"id": root_id})
        return cls(soup, root)

    # Traversal ------------------------------------------------------------

    def elements(self, *names: str) -> list[Element]:
        """文書順の要素リストのスナップショットを返します。"""

        if names:
            return list(self._root.find_all(list(names)))
        return list(self._root.find_all(True))

    def for_each_element(self, visit: Callable[[Element], None], *names: str) -> None:
        """各要素を訪問します。訪問中に取り除かれた要素は飛ばします。"""

        for element in self.elements(*names):
            if self.is_detached(element):
                continue
            visit(element)

    def select_one(self, selector: str) -> Element | None:
        return self._root.select_one(selector)

    def find_by_id(self, element_id: str) -> Element | None:
        found = self._root.find(id=element_id)
        return found if isinstance(found, Tag) else None

    # Element accessors ----------------------------------------------------

    @staticmethod
    def tag_name(element: Element) -> str:
        return (element.name or "").lower()

    @staticmethod
    def get_attribute(element: Element, name: str) -> str | None:
        value = element.attrs.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return " ".join(value)
        return str(value)

    @staticmethod
    def set_attribute(element: Element, name: str, value: str) -> None:
        element[name] = value

    @staticmethod
    def remove_attribute(element: Element, name: str) -> None:
        if name in element.attrs:
            del element[name]

    @staticmethod
    def attribute_names(element: Element) -> list[str]:
        return list(element.attrs.keys())

    @staticmethod
    def raw_text(element: Element) -> str:
        """``<style>`` などの直下の文字列をそのまま連結して返します。"""

        return "".join(str(child) for child in element.contents if isinstance(child, NavigableString))

    @staticmethod
    def is_detached(element: Element) -> bool:
        return element.decomposed

    def has_ancestor(self, element: Element, *names: str) -> bool:
        """合成ルートより内側に ``names`` のいずれかの祖先要素があるかを返します。"""

        for parent in element.parents:
            if parent is self._root:
                return False
            if self.tag_name(parent) in names:
                return True
        return False

    # Mutation -------------------------------------------------------------

    @staticmethod
    def unwrap(element: Element) -> None:
        element.unwrap()

    @staticmethod
    def remove(element: Element) -> None:
        element.decompose()

    def set_text(self, element: Element, text: str) -> None:
        container = _RAW_TEXT_CONTAINERS.get(self.tag_name(element), NavigableString)
        element.clear()
        element.append(self._soup.new_string(text, container))

    def create_element(self, name: str, attributes: Mapping[str, str] | None = None, text: str | None = None) -> Element:
        element = self._soup.new_tag(name, attrs=dict(attributes or {}))
        if text:
            element.append(self._soup.new_string(text))
        return element

    @staticmethod
    def append(parent: Element, child: Element) -> None:
        parent.append(child)

    def serialize(self) -> str:
        return self._root.decode_contents()
