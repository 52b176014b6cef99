"""
Votebook Component Model

This module provides the component decorator, element builders and HTML
rendering for the widget.

Example:
    tally = signal(0)

    @component
    def counter():
        return div(
            h2(f"Votes: {tally.value}"),
            button("Vote", data_handler="vote"),
        )

    to_html(counter.render())
"""

from typing import Any, Callable, Dict, List, Optional, Union
from dataclasses import dataclass, field
from html import escape

from . import Memo

VOID_TAGS = frozenset({"br", "hr", "img", "input"})


@dataclass
class VNode:
    """
    Virtual DOM node representing a UI element.

    Attribute names use Python spelling: a trailing underscore is dropped
    (``class_`` -> ``class``) and other underscores become dashes
    (``data_handler`` -> ``data-handler``).
    """
    tag: str
    attrs: Dict[str, Any] = field(default_factory=dict)
    children: List[Union["VNode", str]] = field(default_factory=list)
    key: Optional[str] = None

    def text(self) -> str:
        """Concatenated text of this node and its descendants."""
        return "".join(c if isinstance(c, str) else c.text() for c in self.children)

    def find_all(self, tag: str) -> List["VNode"]:
        """All descendants (and self) with the given tag, in document order."""
        found = [self] if self.tag == tag else []
        for child in self.children:
            if isinstance(child, VNode):
                found.extend(child.find_all(tag))
        return found


def _create_element(tag: str) -> Callable[..., VNode]:
    """
    Factory function to create element builders.

    Returns a function that creates VNodes for the given tag.
    """
    def element(*children: Any, key: Optional[str] = None, **attrs: Any) -> VNode:
        # Flatten any nested lists in children
        flat_children: List[Union[VNode, str]] = []
        for child in children:
            if isinstance(child, (list, tuple)):
                flat_children.extend(child)
            elif child is not None:
                flat_children.append(child if isinstance(child, VNode) else str(child))

        return VNode(tag=tag, attrs=attrs, children=flat_children, key=key)

    return element


# HTML element builders
div = _create_element("div")
span = _create_element("span")
p = _create_element("p")
h1 = _create_element("h1")
h2 = _create_element("h2")
button = _create_element("button")
input_ = _create_element("input")  # Underscore to avoid conflict with builtin
form = _create_element("form")
ul = _create_element("ul")
li = _create_element("li")
small = _create_element("small")


def _attr_name(name: str) -> str:
    return name.rstrip("_").replace("_", "-")


def to_html(node: Union[VNode, str]) -> str:
    """Convert a VNode tree to an HTML string, escaping text and attributes."""
    if isinstance(node, str):
        return escape(node, quote=False)

    attrs = []
    for name, value in node.attrs.items():
        if value is None or value is False:
            continue
        if value is True:
            attrs.append(_attr_name(name))
        else:
            attrs.append(f'{_attr_name(name)}="{escape(str(value))}"')
    if node.key is not None:
        attrs.append(f'data-key="{escape(node.key)}"')

    attr_str = " " + " ".join(attrs) if attrs else ""

    if node.tag in VOID_TAGS:
        return f"<{node.tag}{attr_str} />"

    children_html = "".join(to_html(c) for c in node.children)
    return f"<{node.tag}{attr_str}>{children_html}</{node.tag}>"


class Component(Memo[VNode]):
    """
    A reactive UI component.

    Components cache their VNode tree and mark themselves dirty when any
    signal read during rendering changes. An effect that renders a
    component re-runs on those changes too.
    """

    def render(self) -> VNode:
        """
        Render the component, returning its VNode tree.

        If the component is clean, returns the cached VNode.
        If dirty, re-runs the render function.
        """
        return self()

    @property
    def dirty(self) -> bool:
        return self._dirty

    def mark_dirty(self) -> None:
        """Mark the component as needing re-render."""
        self._on_dependency_changed()


def component(fn: Callable[[], VNode]) -> Component:
    """
    Decorator to create a reactive component.

    Example:
        @component
        def my_component():
            return div("Hello, World!")
    """
    return Component(fn)
