"""Reviewer personas and prompt text for each engineering profession."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Profession:
    key: str
    name: str
    reviewer: str
    focus: tuple[str, ...]
    example_standard: str = "the applicable national code or standard"

    @property
    def id_prefix(self) -> str:
        return self.key[:4]


PROFESSIONS: dict[str, Profession] = {
    "architecture": Profession(
        key="architecture",
        name="Architecture",
        reviewer="an architect",
        focus=(
            "Building layout and functional zoning",
            "Fire separation and evacuation routes",
            "Barrier-free access and universal design",
            "Facade and elevation design",
            "Energy efficiency and green building measures",
            "Space utilisation",
        ),
        example_standard="GB 50016-2014",
    ),
    "structure": Profession(
        key="structure",
        name="Structure",
        reviewer="a structural engineer",
        focus=(
            "Soundness and safety of the structural system",
            "Seismic design and detailing",
            "Foundation design and ground treatment",
            "Section sizes and reinforcement of primary members",
            "Choice of structural materials",
            "Structural calculations and checks",
        ),
        example_standard="GB 50011-2010",
    ),
    "plumbing": Profession(
        key="plumbing",
        name="Plumbing",
        reviewer="a water supply and drainage engineer",
        focus=(
            "Water supply system design and parameters",
            "Drainage and sewage treatment",
            "Fire water supply",
            "Water saving and reuse",
            "Pipe material and equipment selection",
            "Pipe routing and constructability",
        ),
        example_standard="GB 50015-2019",
    ),
    "electrical": Profession(
        key="electrical",
        name="Electrical",
        reviewer="an electrical engineer",
        focus=(
            "Power supply and distribution",
            "Lighting systems",
            "Lightning protection and earthing",
            "Low-voltage and building intelligence systems",
            "Fire-related electrical design",
            "Electrical energy saving",
        ),
        example_standard="GB 50052-2009",
    ),
    "hvac": Profession(
        key="hvac",
        name="HVAC",
        reviewer="an HVAC engineer",
        focus=(
            "Air-conditioning system selection",
            "Ventilation and smoke exhaust",
            "Heating and cooling sources",
            "Energy-efficient HVAC design",
            "Equipment selection",
            "Pipework and ductwork layout",
        ),
        example_standard="GB 50736-2012",
    ),
    "fire": Profession(
        key="fire",
        name="Fire Protection",
        reviewer="a fire protection engineer",
        focus=(
            "Fire compartmentation",
            "Safe evacuation",
            "Fire fighting equipment provision",
            "Automatic fire alarm systems",
            "Automatic sprinkler systems",
            "Smoke control and exhaust",
        ),
        example_standard="GB 50016-2014",
    ),
    "landscape": Profession(
        key="landscape",
        name="Landscape",
        reviewer="a landscape architect",
        focus=(
            "Overall landscape layout",
            "Planting design",
            "Hardscape and landscape features",
            "Water features",
            "Landscape lighting",
            "Ecology and sustainability",
        ),
    ),
    "interior": Profession(
        key="interior",
        name="Interior",
        reviewer="an interior designer",
        focus=(
            "Interior functional layout",
            "Fit-out design style",
            "Interior material selection",
            "Interior lighting",
            "Colour and finish coordination",
            "Ergonomics",
        ),
        example_standard="GB 50222-2017",
    ),
    "cost": Profession(
        key="cost",
        name="Cost",
        reviewer="a cost engineer",
        focus=(
            "Soundness of the investment estimate",
            "Accuracy of quantities",
            "Choice of rates and prices",
            "Completeness of the cost breakdown",
            "Economic benefit analysis",
            "Return on investment and risk",
        ),
    ),
}


def get_profession(key: str) -> Profession | None:
    return PROFESSIONS.get(key)


def build_system_prompt(profession: Profession) -> str:
    focus_lines = "\n".join(f"{index}. {item}" for index, item in enumerate(profession.focus, start=1))
    return (
        f"You are {profession.reviewer} and an expert reviewer, responsible for the "
        f"{profession.name} part of architectural feasibility-study reports.\n"
        f"Review focus:\n{focus_lines}\n\n"
        "Return the review strictly as JSON:\n"
        "{\n"
        f'  "ai_analysis": "overall assessment of the {profession.name} discipline",\n'
        '  "review_items": [\n'
        "    {\n"
        '      "id": "unique id",\n'
        '      "description": "issue description",\n'
        f'      "standard": "governing national code or standard (e.g. {profession.example_standard})",\n'
        '      "severity": "high/medium/low",\n'
        '      "suggestion": "concrete remediation"\n'
        "    }\n"
        "  ]\n"
        "}"
    )


def build_user_prompt(profession: Profession, report_summary: str) -> str:
    return (
        f"Review the {profession.name} discipline of the following architectural feasibility-study report.\n\n"
        f"Report summary:\n{report_summary}\n\n"
        "Return strict JSON only, with:\n"
        f"- ai_analysis: string, overall evaluation of the {profession.name} discipline with strengths and weaknesses\n"
        "- review_items: array of 5-10 objects, each with id, description, standard, suggestion\n\n"
        "Notes:\n"
        f"1. standard must cite the relevant national code or standard (e.g. {profession.example_standard})\n"
        f"2. id format: {profession.id_prefix}_<n> (e.g. {profession.id_prefix}_1)\n"
        "3. Do not wrap the JSON in markdown or add prose."
    )


SYSTEM_PROMPTS: dict[str, str] = {key: build_system_prompt(item) for key, item in PROFESSIONS.items()}
