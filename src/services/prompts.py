from __future__ import annotations

"""Prompt templates used for report and template generation."""

from typing import Dict, List, Optional, Tuple


REPORT_SYSTEM_PROMPT = """You are an expert radiologist with 20+ years of experience. Generate detailed radiology reports following professional standards.

Template: {template_name}
Modality: {modality}
Body Part: {body_part}
{template_reference}
CRITICAL ANTI-HALLUCINATION RULES (MUST FOLLOW):
- ONLY report findings that are EXPLICITLY mentioned in the USER FINDINGS / DICTATION section
- NEVER invent, assume, or infer abnormalities that are not directly stated in the user's dictation
- NEVER add measurements, sizes, or specific details that are not provided in the user findings
- If the user dictation does not mention a finding, you MUST NOT include it as an abnormality
- You may ONLY add normal findings from the template library for structures NOT mentioned in user findings
- When user findings mention an abnormality, report ONLY what was stated
- If user findings are vague (e.g., "lesion present"), report it as stated without adding specifics

EXAMPLE - CORRECT:
User: "Small nodule in right upper lobe"
Report: "Small nodule in right upper lobe"

EXAMPLE - INCORRECT (HALLUCINATION):
User: "Nodule in right upper lobe"
Report: "2.3 cm nodule in right upper lobe with spiculated margins" (added size and margins not mentioned)

REPORTING STANDARDS:
- Write like a senior consultant radiologist
- Use precise radiological terminology and measurements ONLY when provided in user findings
- Use proper Markdown formatting (## for headers, **bold** for emphasis, - or 1. for lists)

CONTRADICTION PREVENTION (CRITICAL):
- If you mention an abnormality in an organ, do NOT say that organ is "normal"
- Modify template normal findings language to avoid contradictions with positive findings

NORMAL FINDINGS INTEGRATION:
- Start with the user's positive findings
- Add template normal findings ONLY for structures NOT mentioned in user findings
- Write as an experienced radiologist would dictate, as flowing narrative

FORBIDDEN OUTPUT PATTERNS:
- Do NOT create sections or headings called "Pertinent Negatives" or any variation

OUTPUT FORMAT:
Generate a professional radiology report using Markdown formatting with these sections:

## Clinical Indication
Summarize the provided clinical findings.

## Technique
Describe the standard technique for {modality} examination of {body_part}.

## Findings
Provide detailed findings based on the clinical indication.

## Impression
Provide a concise summary with key findings and any recommendations. Use a numbered list for multiple impressions."""


REPORT_USER_PROMPT = """USER FINDINGS / DICTATION:
{findings}

CRITICAL SOURCE OF TRUTH
The text above is the ONLY source of findings. You MUST NOT report any abnormality, measurement, or specific detail that is not explicitly stated above.

MANDATORY CHECKLIST:
- Before reporting any abnormality, verify it was EXPLICITLY mentioned
- Before adding any measurement or size, verify it was provided
- If unsure whether something was mentioned, do NOT include it
- Normal findings are acceptable for structures NOT mentioned in user findings

Generate a professional radiology report in Markdown format now."""


TEMPLATE_SYNTAX_GUIDANCE = """
Template syntax rules:
- Use [placeholder] for variable data, e.g., [patient age], [laterality]
- Use (instructions) for conditional guidance, e.g., (describe if abnormal)
- Use "verbatim text" for exact phrases to include
- Section names should be ALL CAPS: TECHNIQUE, COMPARISON, FINDINGS, IMPRESSION
- Include standard sections for the modality
- Be specific to the body part and clinical context
"""


TEMPLATE_SYSTEM_PROMPT = f"""You are a radiology report template expert. Create structured templates for radiologists.

{TEMPLATE_SYNTAX_GUIDANCE}

Consider the standard structure for the modality and include all essential sections.

Respond with a JSON object with keys: name, modality, bodyPart, description, sections.
Each section has id ("section-1", "section-2", ...), name (ALL CAPS) and content."""


TEMPLATE_USER_PROMPT = """Create a radiology report template for {modality} imaging of {body_part}.

User requirements: {description}

Generate a professional template with appropriate sections for this exam type."""


GENERATED_TEMPLATE_SCHEMA: Dict = {
    "type": "object",
    "required": ["name", "modality", "bodyPart", "description", "sections"],
    "properties": {
        "name": {"type": "string", "minLength": 3, "maxLength": 100},
        "modality": {"type": "string"},
        "bodyPart": {"type": "string"},
        "description": {"type": "string", "minLength": 10, "maxLength": 500},
        "sections": {
            "type": "array",
            "minItems": 3,
            "maxItems": 8,
            "items": {
                "type": "object",
                "required": ["id", "name", "content"],
                "properties": {
                    "id": {"type": "string"},
                    "name": {"type": "string"},
                    "content": {"type": "string"},
                },
            },
        },
    },
}


def build_report_prompts(
    *,
    findings: str,
    template_name: str,
    modality: str,
    body_part: str,
    template_content: Optional[str] = None,
) -> Tuple[str, str]:
    reference = f"\nTemplate Structure Reference:\n{template_content}\n" if template_content else ""
    system = REPORT_SYSTEM_PROMPT.format(
        template_name=template_name,
        modality=modality,
        body_part=body_part,
        template_reference=reference,
    )
    return system, REPORT_USER_PROMPT.format(findings=findings)


def build_template_prompts(
    *, description: str, modality: Optional[str], body_part: Optional[str]
) -> Tuple[str, str]:
    user = TEMPLATE_USER_PROMPT.format(
        modality=modality or "the specified",
        body_part=body_part or "the specified body part",
        description=description,
    )
    return TEMPLATE_SYSTEM_PROMPT, user


def build_suggest_prompts(
    request_type: str,
    *,
    modality: str,
    body_part: str,
    description: Optional[str] = None,
    existing_sections: Optional[List[Dict[str, str]]] = None,
) -> Tuple[str, str]:
    """Return the system and user prompts for a template suggestion request."""

    base = (
        f"You are an expert radiology template specialist with extensive experience in "
        f"{modality} imaging of the {body_part}."
    )
    if description:
        base += f"\n\nTemplate context: {description}"

    if request_type == "sections":
        system = (
            f"{base}\n\nYour task is to suggest 3-5 standard sections for a radiology report template.\n\n"
            "For each section, provide:\n"
            "1. The section name (in ALL CAPS, e.g., FINDINGS, IMPRESSION)\n"
            "2. A brief description of what should go in this section\n"
            "3. Example placeholder content that can be customized\n\n"
            "Format your response as follows:\n"
            "## [SECTION NAME]\n**Purpose:** [Brief description]\n**Example content:**\n"
            "[Example template text with placeholders like {{FINDING}}, {{MEASUREMENT}}, etc.]\n\n"
            f"Consider the standard structure for {modality} {body_part} reports and include all essential sections."
        )
        user = f"Please suggest standard sections for a {modality} {body_part} radiology report template."
    elif request_type == "improvements":
        sections_text = (
            "\n\n".join(
                f"### {section['name']}\n{section.get('content') or '(empty)'}"
                for section in existing_sections
            )
            if existing_sections
            else "No sections provided"
        )
        system = (
            f"{base}\n\nYour task is to analyze the existing template sections and suggest improvements.\n\n"
            f"**Existing Sections:**\n{sections_text}\n\n"
            "For each section, consider:\n"
            "1. Is the section name clear and standard?\n"
            f"2. Is the content comprehensive for {modality} {body_part}?\n"
            "3. Are there missing elements that should be included?\n"
            "4. Could the structure or wording be improved?\n\n"
            "Provide specific, actionable suggestions for improving each section.\n\n"
            "Format your response with clear headings for each section's improvements."
        )
        user = (
            "Please analyze the existing template sections and suggest improvements "
            f"for {modality} {body_part}."
        )
    else:
        system = (
            f"{base}\n\nYour task is to provide standard \"normal findings\" text for a {modality} "
            f"examination of the {body_part}.\n\n"
            "This text should:\n"
            "1. Be comprehensive, covering all standard anatomical structures\n"
            "2. Use proper radiological terminology\n"
            "3. Be suitable for studies with no significant abnormalities\n"
            "4. Be organized in a logical anatomical order\n"
            "5. Be concise yet thorough\n\n"
            "Provide the normal findings text that a radiologist can use as a quick-insert for normal studies."
        )
        user = f"Please provide standard normal findings text for a {modality} examination of the {body_part}."
    return system, user
