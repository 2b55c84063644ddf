"""Prompts for the vision decision engine."""
from typing import Optional

ACTION_SCHEMA = """{
  "thought": "what you see and why you chose the next actions",
  "actions": [
    {
      "type": "click" | "type" | "keypress" | "scroll" | "hover" | "wait" | "navigate" | "done" | "fail",
      "reason": "short explanation",
      "selector": "css selector (optional)",
      "coordinate": {"x": 123, "y": 456} (optional, for click/hover/type),
      "text": "text to type, or URL for navigate (optional)",
      "key": "Enter" | "Escape" | "Tab" (optional, for keypress),
      "duration": 2000 (optional, ms for wait),
      "intent": "what element you are looking for, e.g. login or submit (optional)"
    }
  ]
}"""

CHAOS_ACTION_SCHEMA = ACTION_SCHEMA.replace('"type": "click" |', '"type": "click" | "rage_click" |')

SELECTOR_PRIORITY = """SELECTOR PRIORITY (use the first available):
1. data-test or data-testid: [data-test='value'] or [data-testid='value']
2. id attribute: #elementId (ids containing dots: [id='customer.firstName'])
3. name attribute: [name='fieldName']
4. aria-label: [aria-label='Button text']
5. Visible text only: use coordinates
Always prefer selectors over coordinates for form inputs."""


def build_goal_prompt(
    goal: str,
    history: str,
    page_context: Optional[str] = None,
    dom_diff: Optional[str] = None,
    warning: Optional[str] = None,
) -> str:
    """Prompt for a standard run: reach ``goal`` on the page in the screenshot."""
    sections = [
        "You are an automated QA tester acting as a user.",
        f'Your goal: "{goal}"',
        "",
        "History of actions:",
        history,
    ]

    if page_context:
        sections += [
            "",
            "PAGE CONTEXT (interactive elements: t=tag, c=center [x,y], txt=text, id, dt=data-test, l=label):",
            page_context,
            "",
            SELECTOR_PRIORITY,
        ]

    if dom_diff:
        sections += [
            "",
            "PAGE CHANGE DETECTION:",
            dom_diff,
            'If "No changes detected" follows several clicks, try a different approach.',
        ]

    if warning:
        sections += ["", warning]

    sections += [
        "",
        "Analyze the screenshot and decide the next action(s) toward the goal.",
        "Return ONLY a JSON object with this structure (no markdown):",
        ACTION_SCHEMA,
        "",
        "Rules:",
        '1. If the goal is achieved, return a single action of type "done".',
        '2. If you are stuck or see an error that blocks the goal, return type "fail" with the reason.',
        "3. For clicks prefer the coordinate of what you SEE; use the page context to be precise.",
        '4. After typing into a search box or the last form field, use "keypress" with key "Enter".',
        '5. If a button is hidden behind an overlay, use "keypress" with "Enter" instead of clicking it.',
        "6. Do not clear or retype a field that already holds the right text.",
        "7. If the page visibly changed as the goal implies, the goal is probably done.",
        '8. If history shows the same action twice with no effect, stop: return "done" or "fail".',
    ]
    return "\n".join(sections)


def build_chaos_prompt(history: str) -> str:
    """Prompt for a chaos run: break the application, do not complete it."""
    return "\n".join(
        [
            "You are an expert QA penetration tester. Your goal is NOT to complete the flow.",
            "Your goal is to crash the application, trigger error messages, or find logic loopholes.",
            "",
            "Directives:",
            "- Fuzz inputs: emojis, SQL injection patterns, very long text, negative quantities.",
            "- Edge-case navigation: go back during payment, reopen finished steps.",
            "- Resource stress: hammer 'Generate' or 'Search' buttons (use rage_click).",
            "- Visual analysis: look for broken layouts, overlapping text, '500 Internal Server Error' pages.",
            "",
            "History of actions:",
            history,
            "",
            "Analyze the screenshot and decide the next chaotic action(s).",
            "Return ONLY a JSON object with this structure (no markdown):",
            CHAOS_ACTION_SCHEMA,
            "",
            "Rules:",
            '1. Never return "done" unless you have exhausted every idea on this page.',
            '2. If you see a crash or error page, return "fail" (it means the app CRASHED).',
        ]
    )
