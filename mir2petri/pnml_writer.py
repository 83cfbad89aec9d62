"""
Export of the Petri net.

PNML: PTNet format, pnml.org 2009 grammar, written with xml.etree.ElementTree.
LoLA: text format of the LoLA 2 model checker.
DOT: Graphviz digraph, places as circles and transitions as boxes.

Every writer emits places, transitions and arcs sorted by label so the
output is deterministic.
"""

import xml.etree.ElementTree as ET
from typing import Any

from .pn_model import Arc, PetriNet, Place, Transition

PNML_NS = "http://www.pnml.org/version-2009/grammar/ptnet"


def _sorted_places(net: PetriNet) -> list[Place]:
    return [net.places[label] for label in sorted(net.places)]


def _sorted_transitions(net: PetriNet) -> list[Transition]:
    return [net.transitions[label] for label in sorted(net.transitions)]


def _sorted_arcs(net: PetriNet) -> list[Arc]:
    return sorted(net.arcs, key=lambda a: (a.source, a.target))


def write_pnml(net: PetriNet, path: str) -> None:
    """Write Petri net to PNML file (PTNet 2009)."""
    root = ET.Element("pnml", xmlns="http://www.pnml.org/version-2009/grammar/pnml")
    net_elem = ET.SubElement(root, "net", id="net0", type=PNML_NS)

    # Page (required by some tools)
    page = ET.SubElement(net_elem, "page", id="page0")

    for p in _sorted_places(net):
        place_elem = ET.SubElement(page, "place", id=p.label)
        name_elem = ET.SubElement(place_elem, "name")
        text_elem = ET.SubElement(name_elem, "text")
        text_elem.text = p.label
        if p.tokens > 0:
            init_elem = ET.SubElement(place_elem, "initialMarking")
            init_text = ET.SubElement(init_elem, "text")
            init_text.text = str(p.tokens)

    for t in _sorted_transitions(net):
        trans_elem = ET.SubElement(page, "transition", id=t.label)
        name_elem = ET.SubElement(trans_elem, "name")
        text_elem = ET.SubElement(name_elem, "text")
        text_elem.text = t.label

    for a in _sorted_arcs(net):
        arc_elem = ET.SubElement(
            page, "arc", id=f"({a.source}, {a.target})", source=a.source, target=a.target
        )
        if a.weight != 1:
            inscr = ET.SubElement(arc_elem, "inscription")
            inscr_text = ET.SubElement(inscr, "text")
            inscr_text.text = str(a.weight)

    tree = ET.ElementTree(root)
    _indent(root)
    tree.write(path, encoding="utf-8", xml_declaration=True, method="xml")


def _indent(elem: ET.Element, level: int = 0) -> None:
    """Pretty-print indentation."""
    i = "\n" + level * "  "
    if len(elem):
        if not elem.text or not elem.text.strip():
            elem.text = i + "  "
        if not elem.tail or not elem.tail.strip():
            elem.tail = i
        for child in elem:
            _indent(child, level + 1)
        if not child.tail or not child.tail.strip():
            child.tail = i
    else:
        if level and (not elem.tail or not elem.tail.strip()):
            elem.tail = i


def lola_text(net: PetriNet) -> str:
    lines = ["PLACE"]
    places = _sorted_places(net)
    for n, p in enumerate(places):
        lines.append(f"    {p.label}{';' if n == len(places) - 1 else ','}")
    lines.append("")

    lines.append("MARKING")
    marked = [p for p in places if p.tokens > 0]
    for n, p in enumerate(marked):
        lines.append(f"    {p.label} : {p.tokens}{';' if n == len(marked) - 1 else ','}")
    if not marked:
        lines.append("    ;")
    lines.append("")

    for t in _sorted_transitions(net):
        lines.append(f"TRANSITION {t.label}")
        for section, arcs in (("CONSUME", net.preset(t.label)), ("PRODUCE", net.postset(t.label))):
            lines.append(f"  {section}")
            entries = sorted(arcs.items())
            for n, (label, weight) in enumerate(entries):
                lines.append(f"    {label} : {weight}{';' if n == len(entries) - 1 else ','}")
            if not entries:
                lines.append("    ;")
        lines.append("")
    return "\n".join(lines)


def write_lola(net: PetriNet, path: str) -> None:
    """Write Petri net in the LoLA 2 format."""
    with open(path, "w", encoding="utf-8") as f:
        f.write(lola_text(net))


def dot_text(net: PetriNet) -> str:
    lines = ["digraph petrinet {"]
    for p in _sorted_places(net):
        mark = "&bull;" if p.tokens == 1 else (str(p.tokens) if p.tokens > 1 else "")
        lines.append(f'    {p.label} [shape="circle" xlabel="{p.label}" label="{mark}"];')
    for t in _sorted_transitions(net):
        lines.append(f'    {t.label} [shape="box" xlabel="" label="{t.label}"];')
    for a in _sorted_arcs(net):
        weight = f' [label="{a.weight}"]' if a.weight != 1 else ""
        lines.append(f"    {a.source} -> {a.target}{weight};")
    lines.append("}")
    return "\n".join(lines) + "\n"


def write_dot(net: PetriNet, path: str) -> None:
    """Write Petri net as a Graphviz digraph."""
    with open(path, "w", encoding="utf-8") as f:
        f.write(dot_text(net))


def net_to_dict(net: PetriNet) -> dict[str, Any]:
    """Net as plain data for JSON dumps (--dump-json)."""
    return {
        "places": [
            {"label": p.label, "kind": p.kind, "tokens": p.tokens} for p in _sorted_places(net)
        ],
        "transitions": [
            {"label": t.label, "kind": t.kind} for t in _sorted_transitions(net)
        ],
        "arcs": [
            {"source": a.source, "target": a.target, "weight": a.weight}
            for a in _sorted_arcs(net)
        ],
        "initial_marking": net.initial_marking,
        "warnings": net.warnings,
    }


WRITERS = {
    "pnml": write_pnml,
    "lola": write_lola,
    "dot": write_dot,
}
