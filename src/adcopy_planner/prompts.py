from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from adcopy_planner.conversation import SeedArtifact
    from adcopy_planner.storage import Advertiser


# One pair per batch: the two variations of a batch differ from each other,
# and each batch differs in tone from the other batches.
STYLE_PRESETS: tuple[tuple[str, str], ...] = (
    ("make the tone friendlier and more humorous", "make it more serious and trustworthy"),
    ("use more question-style sentences", "make it punchy with exclamations and imperatives"),
    ("emphasize the selling points more directly", "soften it with a storytelling approach"),
)

IMAGE_ANALYSIS_INSTRUCTION = (
    "Analyze this advertising image:\n\n"
    "## Text\n"
    "- Main copy, sub copy, CTA wording\n\n"
    "## Design\n"
    "- Color tone, layout, typography\n\n"
    "## Imagery\n"
    "- Product / people / background, message conveyed, target audience\n\n"
    "## Ad characteristics\n"
    "- Category, selling points, strengths / weaknesses\n\n"
    "Keep it concise."
)

OCR_INSTRUCTION = (
    "Analyze this advertising image.\n\n"
    "Answer only in this format:\n\n"
    "[Category]\n"
    "(one word: beauty/health/food/fashion/electronics/finance/education/travel/automotive/agency/other)\n\n"
    "[Copy]\n"
    "(every piece of text visible in the image: main copy, sub copy, CTA, one per line)\n\n"
    "Rules:\n"
    '- If there is no text, write "No text" under [Copy]\n'
    "- Output only the category and the copy, no other explanation"
)


def seed_context(seed: SeedArtifact | None) -> str:
    if seed is None:
        return ""
    if seed.kind == "image":
        parts = [f"[Image Analysis]\n{seed.text.strip()}"]
    else:
        parts = [f"[Original Script]\n{seed.text.strip()}"]

    product_lines: list[str] = []
    if seed.product_name.strip():
        product_lines.append(f"Product: {seed.product_name.strip()}")
    appeals = [a.strip() for a in seed.appeals if a.strip()]
    if appeals:
        product_lines.append(f"Selling points: {', '.join(appeals)}")
    if product_lines:
        parts.append("[Product Info]\n" + "\n".join(product_lines))
    return "\n\n".join(parts)


def chat_system_prompt(seed: SeedArtifact | None) -> str:
    subject = "ad image" if seed is not None and seed.kind == "image" else "video ad script"
    return (
        f"You are an expert in {subject} variations.\n"
        "Using the material below, talk with the user to settle the direction of the variations.\n\n"
        f"{seed_context(seed)}\n\n"
        "---\n\n"
        "Your role:\n"
        "1. Ask step-by-step questions to find out which direction the user wants\n"
        "2. Ask about one topic at a time\n"
        "3. ALWAYS offer clickable choices, following this format exactly:\n\n"
        "[Choice format]\n"
        '- Every choice is written as "A. choice text"\n'
        "- One choice per line\n"
        "- Offer between 2 and 5 choices\n"
        '- If several choices may be picked, add "(multiple selections allowed)"\n\n'
        "Example:\n"
        '"How should we change the tone?\n\n'
        "A. Friendlier and more humorous\n"
        "B. Serious and trustworthy\n"
        "C. Emotional and warm\n"
        'D. Direct and intense"\n\n'
        "Question order:\n"
        "1. Tone and manner\n"
        "2. Target audience (keep or change)\n"
        "3. What to emphasize\n"
        "4. After 3-4 exchanges, tell the user the variations are ready to generate\n\n"
        "Be friendly. Keep the choice format (choices become buttons)."
    )


def batch_prompt(
    directions: list[str],
    styles: tuple[str, str],
    first_number: int,
    grammar: str = "script",
) -> str:
    """Final instruction for one batch of two variations."""
    second_number = first_number + 1
    direction_lines = "\n".join(f"- {d}" for d in directions) or "- (no specific direction)"
    header = (
        "Based on the conversation so far, create 2 variations of the original.\n\n"
        "[Direction agreed in the conversation]\n"
        f"{direction_lines}\n\n"
        "[Style for this batch]\n"
        f"- Variation {first_number}: {styles[0]}\n"
        f"- Variation {second_number}: {styles[1]}\n\n"
        "[Rules]\n"
        "1. Keep the structure and length of the original as much as possible\n"
        "2. Reflect the direction agreed in the conversation\n"
        "3. Every variation must be distinct\n"
        "4. Avoid expressions that would fail ad review\n\n"
    )
    if grammar == "copy":
        body = (
            "[Output format]\n"
            "---\n"
            f"[Variation {first_number}]\n"
            "Main Copy: (a punchy headline, 15 characters or fewer)\n"
            "Sub Copy: (a line that supports the main copy)\n"
            "Change Point: (what changed compared to the original)\n"
            "---\n"
            f"[Variation {second_number}]\n"
            "Main Copy: ...\n"
            "Sub Copy: ...\n"
            "Change Point: ...\n"
            "---\n\n"
        )
    else:
        body = (
            "[Output format]\n"
            "---\n"
            f"[Variation {first_number}]\n"
            "(script body, similar length to the original)\n\n"
            f"[Change Point] {styles[0]} - what exactly was changed\n\n"
            "---\n"
            f"[Variation {second_number}]\n"
            "(script body, similar length to the original)\n\n"
            f"[Change Point] {styles[1]} - what exactly was changed\n\n"
            "---\n\n"
        )
    return header + body + "Create exactly 2."


def advertiser_context(advertiser: Advertiser | None, media_type: str) -> str:
    if advertiser is None:
        return ""
    lines = [f"Advertiser: {advertiser.name}"]
    if advertiser.products:
        lines.append(f"Products: {', '.join(advertiser.products)}")
    if advertiser.appeals:
        lines.append(f"Selling points: {', '.join(advertiser.appeals)}")
    guidelines = advertiser.guidelines_video if media_type == "video" else advertiser.guidelines_image
    guidelines = guidelines or advertiser.guidelines
    if guidelines:
        lines.append(f"Guidelines: {guidelines}")
    if advertiser.tone_manner:
        lines.append(f"Tone and manner: {advertiser.tone_manner}")
    if advertiser.forbidden_words:
        lines.append(f"Never use: {', '.join(advertiser.forbidden_words)}")
    if advertiser.required_phrases:
        lines.append(f"Must include: {', '.join(advertiser.required_phrases)}")
    if advertiser.cautions:
        lines.append(f"Cautions: {advertiser.cautions}")
    return "\n".join(lines)


def single_shot_prompt(base_copy: str, media_type: str, context: str = "") -> str:
    context_block = f"[Advertiser info]\n{context}\n\n" if context else ""
    if media_type == "video":
        return (
            "You are a professional video ad scriptwriter.\n"
            "Create 6 variations of the video ad script below.\n\n"
            f'Original script: "{base_copy}"\n\n'
            f"{context_block}"
            "Rules:\n"
            "1. Keep the core message and tone of the original\n"
            "2. Vary the direction (humor, emotion, information, ...)\n"
            "3. Each one should feel different while staying consistent\n"
            "4. Follow the guidelines if there are any\n"
            "5. Reflect the selling points\n\n"
            "Output format (follow exactly):\n"
            "---\n"
            "[Script 1]\n"
            "Scene 1: (what is on screen)\n"
            'Narration: "line"\n\n'
            "Scene 2: (what is on screen)\n"
            'Caption: "caption text"\n\n'
            "---\n"
            "[Script 2]\n"
            "(same format)\n\n"
            "---\n"
            "... (6 in total)\n\n"
            "Output only the 6 scripts."
        )
    return (
        "You are a professional ad copywriter.\n"
        "Create 6 variations of the image ad copy below.\n\n"
        f'Original copy: "{base_copy}"\n\n'
        f"{context_block}"
        "Rules:\n"
        "1. Keep the core message and tone of the original\n"
        "2. Vary the phrasing (question, imperative, exclamation, ...)\n"
        "3. Each one should feel different while staying consistent\n"
        "4. Follow the guidelines if there are any\n"
        "5. Reflect the selling points\n\n"
        "Output format (follow exactly):\n"
        "1. Main copy: Sub copy\n"
        "2. Main copy: Sub copy\n"
        "3. Main copy: Sub copy\n"
        "4. Main copy: Sub copy\n"
        "5. Main copy: Sub copy\n"
        "6. Main copy: Sub copy\n\n"
        "Output only the 6 lines."
    )


def plan_ideas_prompt(media_type: str, advertiser_name: str | None = None) -> str:
    type_label = "video" if media_type == "video" else "image"
    advertiser_part = f"\n- Advertiser: {advertiser_name.strip()}" if advertiser_name and advertiser_name.strip() else ""
    return (
        "Write exactly 6 display-ad plan ideas.\n\n"
        "Conditions:\n"
        f"- Creative type: {type_label}{advertiser_part}\n"
        '- Each idea is one line in the form "Title: one-line description".\n'
        "- Number them 1 to 6.\n"
        "- Output only the 6 ideas, no preamble.\n\n"
        "Example format:\n"
        "1. Title: one-line description\n"
        "2. Title: one-line description\n"
        "...\n"
        "6. Title: one-line description"
    )


def review_prompt(copy: str, media_type: str, advertiser_name: str | None = None) -> str:
    advertiser_line = f"Advertiser: {advertiser_name}\n" if advertiser_name else ""
    if media_type == "video":
        return (
            "You are a professional reviewer of video ad scripts.\n"
            "Analyze the video ad script below.\n\n"
            f"{advertiser_line}"
            f"Script:\n{copy}\n\n"
            "Provide these four things:\n"
            "1. good: strengths of this script (1-2 sentences)\n"
            "2. bad: what needs improvement (1-2 sentences)\n"
            "3. suggestion: a concrete direction for improvement (1-2 sentences)\n"
            "4. revised: the improved script, keeping the same scene structure\n\n"
            "Answer ONLY with JSON in this shape, nothing else:\n"
            '{"good":"...","bad":"...","suggestion":"...","revised":"..."}'
        )
    return (
        "You are a professional reviewer of image ad copy.\n"
        "Analyze the image ad copy below.\n\n"
        f"{advertiser_line}"
        f'Copy: "{copy}"\n\n'
        "Write each of the following in 1-2 sentences:\n"
        "1. good: strengths of this copy\n"
        "2. bad: what needs improvement\n"
        "3. suggestion: a concrete direction for improvement\n"
        "4. revised: the improved copy (Main copy: Sub copy)\n\n"
        "Answer ONLY with JSON in this shape:\n"
        '{"good":"...","bad":"...","suggestion":"...","revised":"..."}'
    )


def learn_prompt(script: str, media_type: str, advertiser: Advertiser | None = None) -> str:
    is_video = media_type == "video"
    noun = "script" if is_video else "copy"
    type_label = "video ad script" if is_video else "image ad copy"
    focus = "scene composition, narration style, transitions" if is_video else "headline style, sub copy patterns"
    existing_guidelines = (advertiser.guidelines if advertiser else None) or "none"
    existing_appeals = ", ".join(advertiser.appeals) if advertiser and advertiser.appeals else "none"
    existing_cautions = (advertiser.cautions if advertiser else None) or "none"
    return (
        "You are an advertising planning expert.\n"
        f"Analyze the {type_label} below and write a production guideline.\n\n"
        f"Advertiser: {advertiser.name if advertiser else 'unspecified'}\n\n"
        f"=== Input {noun} ===\n{script}\n\n"
        "=== Existing info (for reference) ===\n"
        f"Existing guidelines: {existing_guidelines}\n"
        f"Existing selling points: {existing_appeals}\n"
        f"Existing cautions: {existing_cautions}\n\n"
        "=== Request ===\n"
        f"1. guidelines: the style, tone and structure of this {noun}\n"
        f"   - include {focus}\n"
        "   - concrete enough to reuse for the next similar ad\n"
        "   - merge with the existing guidelines if there are any\n"
        f"2. appeals: the key selling points used in this {noun} (array, at most 5)\n"
        f"3. cautions: risky expressions or patterns found in this {noun} (if any)\n\n"
        "Answer ONLY with JSON in this shape:\n"
        '{"guidelines":"...","appeals":["...","..."],"cautions":"... (empty string if none)"}'
    )
