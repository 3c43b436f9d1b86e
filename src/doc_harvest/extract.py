from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from .profile import SiteProfile
from .urls import normalize_target

_DATA_ATTRS = (
    "data-id",
    "data-api-endpoint",
    "data-filename",
    "data-name",
    "data-title",
    "download",
    "title",
    "aria-label",
)

_META_REFRESH_RE = re.compile(r"url\s*=\s*['\"]?([^'\";]+)", re.IGNORECASE)
_WINDOW_LOCATION_RE = re.compile(
    r"window\.location(?:\.href)?\s*=\s*['\"]([^'\"]+)['\"]"
)
_ITEM_ID_RE = re.compile(r"(\d+)$")


@dataclass(frozen=True)
class PageHandle:
    """A loaded page as the crawler sees it."""

    url: str
    html: str
    status: int = 200


@dataclass(frozen=True)
class LinkElement:
    href: str
    target: str | None
    text: str = ""
    name_text: str = ""
    classes: tuple[str, ...] = ()
    attrs: dict[str, str] = field(default_factory=dict)
    in_holder: bool = False
    container_id: str | None = None
    item_id: str | None = None
    item_classes: tuple[str, ...] = ()
    item_type: str = ""
    sibling_name: str = ""

    def attr(self, name: str) -> str:
        return self.attrs.get(name, "")


@dataclass(frozen=True)
class EmbedElement:
    src: str
    target: str | None
    title: str = ""


@dataclass(frozen=True)
class ContainerItem:
    item_id: str | None
    classes: tuple[str, ...]
    item_type: str
    has_type_marker: bool
    title: str
    link: LinkElement | None


@dataclass(frozen=True)
class ContainerGroup:
    container_id: str | None
    title: str
    items: tuple[ContainerItem, ...]


@dataclass(frozen=True)
class ElementSet:
    page_url: str
    links: tuple[LinkElement, ...] = ()
    embeds: tuple[EmbedElement, ...] = ()
    containers: tuple[ContainerGroup, ...] = ()
    redirects: tuple[str, ...] = ()
    html: str = ""


class ContentExtractor(Protocol):
    def extract_elements(self, page: PageHandle) -> ElementSet: ...


def _attr_text(val: object) -> str:
    if isinstance(val, list):
        if not val:
            return ""
        return " ".join(str(v) for v in val)
    return str(val or "")


def _classes(tag: Tag) -> tuple[str, ...]:
    val = tag.get("class")
    if isinstance(val, list):
        return tuple(str(c) for c in val)
    return tuple(str(val or "").split())


def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


class HtmlExtractor:
    """Pulls links, embeds and module-like containers out of raw HTML."""

    def __init__(self, profile: SiteProfile) -> None:
        self.profile = profile

    def _name_text(self, tag: Tag) -> str:
        for cls in self.profile.name_classes:
            found = tag.find(class_=cls)
            if isinstance(found, Tag) and found is not tag:
                text = _clean(found.get_text(" "))
                if text:
                    return text
        return ""

    def _in_holder(self, tag: Tag) -> bool:
        holders = set(self.profile.holder_classes)
        if not holders:
            return False
        node: Tag | None = tag
        while isinstance(node, Tag):
            if holders.intersection(_classes(node)):
                return True
            node = node.parent
        return False

    def _item_of(self, tag: Tag) -> Tag | None:
        if not self.profile.item_class:
            return None
        found = tag.find_parent(class_=self.profile.item_class)
        return found if isinstance(found, Tag) else None

    def _container_of(self, tag: Tag) -> Tag | None:
        if not self.profile.container_class:
            return None
        found = tag.find_parent(class_=self.profile.container_class)
        return found if isinstance(found, Tag) else None

    def _item_details(self, item: Tag) -> tuple[str | None, tuple[str, ...], str, bool]:
        item_id = None
        m = _ITEM_ID_RE.search(_attr_text(item.get("id")))
        if m:
            item_id = m.group(1)
        classes = tuple(c for c in _classes(item) if c != self.profile.item_class)
        marker = item.find(class_=self.profile.type_marker_class)
        has_marker = isinstance(marker, Tag)
        item_type = _clean(marker.get_text(" ")).lower() if has_marker else ""
        if not item_type:
            known = {
                self.profile.attachment_class,
                self.profile.content_page_class,
                "assignment",
                "external_url",
                "context_external_tool",
                "discussion_topic",
                "quiz",
                "context_module_sub_header",
            }
            item_type = next((c for c in classes if c in known), "")
        return item_id, classes, item_type, has_marker

    def _link(self, a: Tag, base: str) -> LinkElement:
        href = _attr_text(a.get("href")).strip()
        attrs = {}
        for name in _DATA_ATTRS:
            if a.has_attr(name):
                attrs[name] = _attr_text(a.get(name)).strip()

        container = self._container_of(a)
        container_id = None
        if container is not None:
            container_id = _attr_text(container.get("id")) or None
        item = self._item_of(a)
        item_id, item_classes, item_type, sibling_name = None, (), "", ""
        if item is not None:
            item_id, item_classes, item_type, _ = self._item_details(item)
            sibling_name = self._name_text(item)

        return LinkElement(
            href=href,
            target=normalize_target(href, base),
            text=_clean(a.get_text(" ")),
            name_text=self._name_text(a),
            classes=_classes(a),
            attrs=attrs,
            in_holder=self._in_holder(a),
            container_id=container_id,
            item_id=item_id,
            item_classes=item_classes,
            item_type=item_type,
            sibling_name=sibling_name,
        )

    def extract_elements(self, page: PageHandle) -> ElementSet:
        soup = BeautifulSoup(page.html or "", "html.parser")

        effective_base = page.url
        base = soup.find("base")
        if isinstance(base, Tag):
            base_href = _attr_text(base.get("href")).strip()
            if base_href:
                effective_base = urljoin(page.url, base_href)

        links = tuple(
            self._link(a, effective_base)
            for a in soup.select("a[href]")
            if _attr_text(a.get("href")).strip()
        )

        embeds: list[EmbedElement] = []
        for tag in soup.select("iframe[src], embed[src], object[data]"):
            src = _attr_text(tag.get("src") or tag.get("data")).strip()
            if not src:
                continue
            title = _clean(
                _attr_text(tag.get("title"))
                or _attr_text(tag.get("aria-label"))
                or _attr_text(tag.get("name"))
            )
            embeds.append(EmbedElement(src, normalize_target(src, effective_base), title))

        containers: list[ContainerGroup] = []
        if self.profile.container_class and self.profile.item_class:
            for box in soup.find_all(class_=self.profile.container_class):
                if not isinstance(box, Tag):
                    continue
                items: list[ContainerItem] = []
                for li in box.find_all(class_=self.profile.item_class):
                    if not isinstance(li, Tag):
                        continue
                    item_id, classes, item_type, has_marker = self._item_details(li)
                    a = li.find("a", href=True)
                    link = self._link(a, effective_base) if isinstance(a, Tag) else None
                    title = (
                        (link.name_text or link.text) if link else ""
                    ) or self._name_text(li)
                    items.append(
                        ContainerItem(item_id, classes, item_type, has_marker, title, link)
                    )
                header = box.find(class_="name") or box.find(class_="header")
                containers.append(
                    ContainerGroup(
                        container_id=_attr_text(box.get("id")) or None,
                        title=_clean(header.get_text(" ")) if isinstance(header, Tag) else "",
                        items=tuple(items),
                    )
                )

        redirects: list[str] = []
        for meta in soup.find_all("meta"):
            if not isinstance(meta, Tag):
                continue
            if _attr_text(meta.get("http-equiv")).lower() != "refresh":
                continue
            m = _META_REFRESH_RE.search(_attr_text(meta.get("content")))
            if m:
                redirects.append(m.group(1).strip())
        for script in soup.find_all("script"):
            if isinstance(script, Tag):
                redirects.extend(_WINDOW_LOCATION_RE.findall(script.get_text()))
        for tag in soup.select("[data-api-endpoint]"):
            endpoint = _attr_text(tag.get("data-api-endpoint")).strip()
            if endpoint:
                redirects.append(endpoint)

        resolved_redirects = tuple(
            r for r in (normalize_target(x, effective_base) for x in redirects) if r
        )

        return ElementSet(
            page_url=page.url,
            links=links,
            embeds=tuple(embeds),
            containers=tuple(containers),
            redirects=resolved_redirects,
            html=page.html or "",
        )
