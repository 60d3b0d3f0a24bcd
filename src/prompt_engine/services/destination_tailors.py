"""Destination-specific prompt tailors.

Each tailor turns a :class:`DestinationContext` into the prompt text sent to
the model when the user picks a destination.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple, Type

from ..domain.destination_models import DESTINATION_LABELS, DestinationContext, DestinationKind
from ..errors import TailoringFailure

MAX_CLARIFYING_QUESTIONS = 5

_QUALITY_GUARDS = """

QUALITY GUARDS:
- If the user input is too short or ambiguous, infer reasonable defaults and clearly mark them as [INFERRED]
- Include validation checks for key assumptions
- Provide fallbacks for ambiguous inputs
- Ensure all outputs are structured and ready for downstream use
- Flag any risks or missing information that could impact quality

VALIDATION REQUIREMENTS:
- All outputs must be well-structured and actionable
- Include metadata about assumptions, risks, and evidence requirements
- Provide clear next steps where applicable
- Ensure content is appropriate for the target destination's workflow"""


class DestinationTailor:
    kind: DestinationKind

    @property
    def label(self) -> str:
        return DESTINATION_LABELS[self.kind]

    def build_base_prompt(self, context: DestinationContext) -> str:
        header = f"DESTINATION: {self.label}"
        if context.sub_provider is not None:
            header += f" ({context.sub_provider.value})"
        lines = [
            header,
            f"USER INTENT: {context.user_intent}",
            "",
            "ORIGINAL PROMPT CONTEXT:",
            context.original_prompt,
        ]
        meta = context.metadata or {}
        if meta:
            lines += [
                "",
                "METADATA:",
                f"- Framework: {meta.get('framework') or 'Not specified'}",
                f"- Stage: {meta.get('stage') or 'Not specified'}",
                f"- Tool: {meta.get('tool') or 'Not specified'}",
                f"- Industry: {meta.get('industry') or 'General'}",
                f"- Team Size: {meta.get('team_size') or 'Not specified'}",
                f"- Experience Level: {meta.get('experience') or 'intermediate'}",
                f"- Time Constraints: {meta.get('time_constraints') or 'standard'}",
            ]
        if context.variables:
            lines += ["", "VARIABLES PROVIDED:"]
            lines += [f"- {key}: {value}" for key, value in context.variables.items()]
        return "\n".join(lines)

    def task_block(self, context: DestinationContext) -> str:
        raise NotImplementedError

    def tailor_prompt(self, context: DestinationContext) -> str:
        prompt = self.build_base_prompt(context) + "\n\n" + self.task_block(context)
        return prompt + _QUALITY_GUARDS


class ChatProviderTailor(DestinationTailor):
    kind = DestinationKind.CHAT_PROVIDER

    def task_block(self, context: DestinationContext) -> str:
        target = context.sub_provider.value if context.sub_provider else self.label
        return f"""TASK: Produce a structured analytical response optimized for {target} consumption.

OUTPUT REQUIREMENTS:
1. SUMMARY: Concise restatement of user intent and key context (2-3 sentences)
2. STRUCTURED RESULT:
   - Organized sections with clear titles and priorities (high/medium/low)
   - Artifact list with specific deliverables and their priorities
   - Actionable insights ready for immediate use
3. NEXT STEPS:
   - Clear, actionable checklist (3-7 items)
   - Prioritized by impact and feasibility
4. VALIDATION METADATA:
   - Key assumptions made during analysis
   - Potential risks or limitations
   - Evidence needed to confirm/refute key points
   - Up to 5 clarifying questions if request was ambiguous

FORMAT: Structure your response as a comprehensive analysis that can be displayed directly, passed to other systems, or used as input for decision-making.

CONSTRAINTS:
- Be concise but thorough
- Focus on actionability over theory
- Include priority rankings for all recommendations
- Flag any inferences with [INFERRED] tags"""


class VisualBoardTailor(DestinationTailor):
    kind = DestinationKind.VISUAL_BOARD
    sticky_word_limit = 12
    max_items = 100

    def task_block(self, context: DestinationContext) -> str:
        return f"""TASK: Create {self.label} board-ready content with sticky notes, text blocks, and shapes optimized for visual collaboration.

OUTPUT REQUIREMENTS:
1. BOARD SUMMARY: 2-3 sentence description of how to read and use the board
2. BOARD ITEMS:
   - STICKY NOTES: Key insights, tasks, or ideas (<={self.sticky_word_limit} words each, one idea per sticky)
   - TEXT BLOCKS: Headers, instructions, or longer explanations
   - SHAPES: Cluster labels, dividers, or grouping elements
   - Each item needs: type, concise text, theme tag, cluster assignment
3. CLUSTERS:
   - Logical groupings with clear names and descriptions
   - Suggested themes: Research, Persona, Pain-Point, Solution, Action
4. LAYOUT HINTS:
   - Grid placement order (row-major: left-to-right, top-to-bottom)
   - Number of columns and spacing recommendations
   - Reading instructions for stakeholders

CONSTRAINTS:
- Sticky note text: Maximum {self.sticky_word_limit} words, one clear idea each
- Maximum {self.max_items} items total (create "Deferred Items" list if needed)
- Include diverse themes for color coding
- Prioritize scanability and visual flow

FORMAT: Output as structured list ready for board creation with positioning data."""


class WorkshopBoardTailor(DestinationTailor):
    kind = DestinationKind.WORKSHOP_BOARD
    sticky_word_limit = 10

    def task_block(self, context: DestinationContext) -> str:
        return f"""TASK: Create {self.label} workshop content optimized for collaborative brainstorming and facilitated sessions.

OUTPUT REQUIREMENTS:
1. WORKSHOP TITLE: Engaging, action-oriented session name
2. BRAINSTORMING ITEMS:
   - STICKY NOTES: Divergent ideas, "How might we..." statements (<={self.sticky_word_limit} words each)
   - VARIED PERSPECTIVES: Multiple angles on the same challenge
   - AFFINITY MAPPING READY: Items with impact/effort ratings where applicable
3. FACILITATION SCRIPT:
   - Step-by-step instructions for a 15-30 minute exercise
   - Timing and materials for each activity
   - Clear participant instructions
4. CLUSTERING FRAMEWORK:
   - Suggested affinity groupings with criteria
   - Impact vs. Effort mapping where relevant
5. ASSUMPTIONS & CONTEXT:
   - Domain assumptions clearly marked
   - Backup activities if primary approach fails

CONSTRAINTS:
- Sticky text: Maximum {self.sticky_word_limit} words, focus on generative thinking
- Emphasize divergent thinking over convergent analysis
- Include facilitation cues and timing

FORMAT: Ready-to-facilitate workshop with all materials and scripts included."""


class DesignToolTailor(DestinationTailor):
    kind = DestinationKind.DESIGN_TOOL

    def task_block(self, context: DestinationContext) -> str:
        return f"""TASK: Create {self.label}-ready UI design specifications with components, copy, and layout guidance.

OUTPUT REQUIREMENTS:
1. DESIGN SYSTEM CONTEXT: Brief description of design approach and style direction
2. UI BLOCKS/COMPONENTS:
   - COMPONENT TYPES: Hero, Card, Form Row, Navigation, Footer, Content Block
   - MICROCOPY: Button text, labels, helper text, placeholder content
   - SIZING SPECIFICATIONS: Preferred width/height, padding, spacing in pixels
   - PRIORITY RANKING: Implementation order and importance
3. LAYOUT RECOMMENDATIONS:
   - Column structure and responsive behavior
   - Component ordering and hierarchy
4. CONTENT STYLE GUIDE:
   - Tone of voice, reading level and accessibility requirements
   - Alt text guidelines for images/icons
5. COPY BLOCKS:
   - Headlines, subheadings, body text and call-to-action options

CONSTRAINTS:
- Focus on frames and text nodes (not sticky notes)
- Include specific pixel measurements for sizing
- Consider mobile and desktop responsive needs
- Handle research-only requests with appropriate UI reduction

FORMAT: Design-ready specifications that can be directly implemented as components."""


_TAILORS: Dict[DestinationKind, Type[DestinationTailor]] = {
    DestinationKind.CHAT_PROVIDER: ChatProviderTailor,
    DestinationKind.VISUAL_BOARD: VisualBoardTailor,
    DestinationKind.WORKSHOP_BOARD: WorkshopBoardTailor,
    DestinationKind.DESIGN_TOOL: DesignToolTailor,
}


def get_destination_tailor(destination: Any) -> DestinationTailor:
    try:
        kind = DestinationKind(destination)
    except ValueError as exc:
        raise TailoringFailure(f"Invalid destination: {destination}") from exc
    return _TAILORS[kind]()


def clarifying_questions(context: DestinationContext) -> List[str]:
    meta = context.metadata or {}
    questions: List[str] = []
    if not context.user_intent or len(context.user_intent) < 20:
        questions.append("What specific outcome are you hoping to achieve?")
    if not meta.get("industry"):
        questions.append("What industry or domain is this for?")
    if not meta.get("team_size"):
        questions.append("How large is your team or target audience?")
    if not context.variables:
        questions.append("Are there any specific constraints or requirements we should consider?")

    if context.destination == DestinationKind.VISUAL_BOARD and not meta.get("team_size"):
        questions.append("How many people will be collaborating on this Miro board?")
    elif context.destination == DestinationKind.WORKSHOP_BOARD and not meta.get("time_constraints"):
        questions.append("How much time do you have for the workshop session?")
    elif context.destination == DestinationKind.DESIGN_TOOL and not meta.get("experience"):
        questions.append("What is the technical expertise level of your target users?")
    return questions[:MAX_CLARIFYING_QUESTIONS]


def tailor_for_destination(context: DestinationContext) -> Tuple[str, List[str]]:
    """Build the tailored prompt and clarifying questions for ``context``."""
    tailor = get_destination_tailor(context.destination)
    return tailor.tailor_prompt(context), clarifying_questions(context)
