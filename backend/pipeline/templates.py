"""
Prompt templates, variation modifiers, placeholder assets and the
deterministic fallback script.

The fallback script uses hardcoded scenes so a session always gets a usable
five-scene structure even when script generation fails.
"""

from typing import Any, Dict, List

from ugc_schemas import Product, Scene, TargetDemographic

CHARACTER_VARIATIONS = [
    "confident expression, direct eye contact",
    "friendly smile, approachable pose",
    "thoughtful expression, slight side angle",
    "energetic expression, dynamic pose",
]

PRODUCT_SHOT_VARIATIONS = [
    "Person holding the product up, showcasing it with a smile",
    "Person using or interacting with the product naturally",
    "Close-up of person with product, emphasizing the connection",
    "Dynamic action shot of person with the product",
]

PLACEHOLDER_CHARACTER_URLS = [
    "https://images.unsplash.com/photo-1507003211169-0a1dd7228f2d?w=400",
    "https://images.unsplash.com/photo-1494790108377-be9c29b29330?w=400",
    "https://images.unsplash.com/photo-1539571696357-5a69c17a67c6?w=400",
    "https://images.unsplash.com/photo-1517841905240-472988babdf9?w=400",
]

PLACEHOLDER_PRODUCT_SHOT_URLS = [
    "https://images.unsplash.com/photo-1523275335684-37898b6baf30?w=400",
    "https://images.unsplash.com/photo-1546868871-7041f2a55e12?w=400",
    "https://images.unsplash.com/photo-1434493789847-2f02dc6ca35d?w=400",
    "https://images.unsplash.com/photo-1579586337278-3befd40fd17a?w=400",
]

DEFAULT_PRODUCT_IMAGE_URL = "https://images.unsplash.com/photo-1523275335684-37898b6baf30?w=400"

# Section title -> scene duration in seconds for generated scripts
SECTION_DURATIONS = {"Hook": 3, "Call to Action": 3}
DEFAULT_SECTION_DURATION = 4

PRODUCT_ANALYST_SYSTEM_PROMPT = (
    "You are an expert e-commerce product analyst. Take the following product details and break "
    "them down into a structured analysis for creating video ads. Focus on extracting key elements "
    "that can be used to craft compelling ads."
)

SCRIPT_WRITER_SYSTEM_PROMPT = (
    "You are a creative video ad automation expert. Using the product breakdown provided, generate "
    "a customer avatar, a complete 30-60 second UGC-style video ad script, ready-to-use prompts for "
    "generating consistent, hyper-realistic scene images, and a breakdown of how the scenes, dialogue "
    "and camera motion assemble into the ad. Scenes map directly to the script sections. Human faces "
    "must look authentic and lifelike, and the primary subject must not be framed too close so the "
    "images survive a 9:16 vertical crop.\n\n"
    "Always respond in valid JSON format with no markdown formatting or code blocks."
)

SCRIPT_SECTIONS = ["Hook", "Problem", "Solution", "Testimonial/Proof", "Call to Action"]


def _audience_hint(demographic: TargetDemographic) -> str:
    gender = demographic.gender if demographic.gender != "All" else ""
    interests = ", ".join(demographic.interests)
    return f"{demographic.ageGroup} {gender}".strip() + f", interested in {interests}"


def _price_line(product: Product) -> str:
    return f"${product.price:.2f}" if product.price is not None else "Not listed"


def build_breakdown_prompt(product: Product, demographic: TargetDemographic) -> str:
    return f"""Product Name: {product.name}

Description: {product.description or ''}

Price: {_price_line(product)}

Target Audience Hints: {_audience_hint(demographic)}

Output in this exact format:
- **Key Features**: Bullet list of 5-7 main features.
- **Benefits**: For each feature, the user benefit in 1-2 sentences.
- **Pain Points Solved**: 3-5 problems this product addresses.
- **Unique Selling Points (USPs)**: What makes it stand out from competitors.
- **Ideal Customer Profile**: Demographics, needs, and motivations.
- **Emotional Hooks**: 3-5 emotional appeals (e.g., convenience, status, relief).
- **Call to Action Ideas**: 2-3 strong CTAs for ads.

Keep the response concise, factual, and ad-focused."""


def build_script_prompt(product: Product, demographic: TargetDemographic, breakdown: str) -> str:
    section_lines = ",\n".join(
        f'    {{"scene": {i}, "section": "{section}", "visuals": "...", "dialogue": "...", '
        f'"motion": "...", "transitions": "..."}}'
        for i, section in enumerate(SCRIPT_SECTIONS, start=1)
    )
    return f"""Based on this product breakdown, generate a complete video ad production plan:

PRODUCT: {product.name}
PRICE: {_price_line(product)}

PRODUCT BREAKDOWN:
{breakdown or 'Not available'}

TARGET AUDIENCE:
- Age Group: {demographic.ageGroup}
- Gender: {demographic.gender}
- Interests: {', '.join(demographic.interests)}
- Content Tone: {demographic.tone}

Output in this exact JSON format:
{{
  "product_name": "{product.name}",
  "ad_format": "Video Ad (30-60 Seconds)",
  "target_platform": "Social Media (9:16 Vertical Crop)",
  "customer_avatar": {{
    "name": "[Name matching the target demographic]",
    "demographics": "[Detailed description of demographics]",
    "backstory": "[2-3 sentence summary of daily life, challenge, and product fit]",
    "visual_description": "[Detailed description for AI image generation, hyper-realistic, framed for crop]"
  }},
  "video_ad_script": {{
    "overall_tone": "[Tone matching {demographic.tone}]"
  }},
  "video_production_breakdown": [
{section_lines}
  ]
}}

"visuals" is a detailed image generation prompt for the scene, "dialogue" the spoken line,
"motion" the camera movement and "transitions" the transition into the next scene.

Respond ONLY with the JSON object."""


def build_character_prompt(avatar: Dict[str, Any], visual_description: str, variation: str) -> str:
    context_lines = []
    if avatar.get("name"):
        context_lines.append(f"Name: {avatar['name']}")
    if avatar.get("demographics"):
        context_lines.append(f"Demographics: {avatar['demographics']}")
    if avatar.get("backstory"):
        context_lines.append(f"Backstory: {avatar['backstory']}")
    character_context = "\n".join(context_lines) or "Not provided"

    return f"""Generate a hyper-realistic portrait photo of a person for a video advertisement.

Character Profile:
{character_context}

Visual Description: {visual_description}, {variation}

Style requirements:
- Photorealistic, high-resolution portrait photograph
- Natural lighting with soft shadows
- Professional photography quality suitable for commercial use
- Subject positioned with adequate space around for 9:16 vertical crop
- Authentic, lifelike facial features and natural expressions
- The person should look relatable and approachable
- Modern, clean background suitable for video ads"""


def build_product_shot_prompt(product: Product, variation: str, character_description: str = "") -> str:
    character_line = f"\nCharacter Context: {character_description}\n" if character_description else ""
    return f"""Generate a hyper-realistic product advertisement photo combining these two reference images.

TASK: Create a natural, professional photo of the person from the first image using or holding the product from the second image.

Product Details:
- Product Name: {product.name}
- Description: {product.description or ''}
{character_line}
Interaction style: {variation}

Requirements:
- Maintain the exact likeness and features of the person from reference image 1
- Maintain the exact appearance of the product from reference image 2
- Photorealistic, high-resolution commercial photography quality
- Professional lighting that highlights both the person and product
- Clean, modern background suitable for social media ads
- Composition suitable for 9:16 vertical video frame
- Natural pose and expression showing genuine interest in the product"""


def build_scene_image_prompt(visuals_prompt: str) -> str:
    return f"""Generate a hyper-realistic scene for a video advertisement based on this reference image.

SCENE DESCRIPTION:
{visuals_prompt}

Requirements:
- Maintain consistency with the person and product shown in the reference image
- Create a natural, professional video ad scene
- Photorealistic, high-resolution quality suitable for 9:16 vertical video
- Professional lighting that matches the scene description
- The scene should feel authentic and engaging for social media ads"""


def build_scene_video_prompt(scene: Scene) -> str:
    """Image-to-video prompt for a scene: visuals, camera motion and the spoken line."""
    parts = [scene.prompt.strip()] if scene.prompt.strip() else []
    if scene.motion:
        parts.append(f"Camera: {scene.motion.strip()}.")
    if scene.dialogue:
        parts.append(f"The person says: {scene.dialogue.strip()}")
    parts.append("Vertical 9:16 UGC-style video, natural handheld feel.")
    return " ".join(parts)


def section_duration(section: str) -> int:
    return SECTION_DURATIONS.get(section, DEFAULT_SECTION_DURATION)


def build_fallback_script(product: Product, demographic: TargetDemographic) -> Dict[str, Any]:
    """
    Deterministic five-scene script used when generation or parsing fails.

    Returns:
        Dictionary with productPrompt, characterPrompt and scenes
    """
    age_group = demographic.ageGroup
    gender = demographic.gender
    tone = demographic.tone
    first_interest = demographic.interests[0] if demographic.interests else None
    person = gender if gender != "All" else "Person"

    product_prompt = (
        f"Introducing {product.name} - the perfect companion for "
        f"{first_interest or 'lifestyle'} enthusiasts. {(product.description or '')[:150]}"
    ).strip()

    character_prompt = (
        f"A {gender.lower() if gender != 'All' else 'person'} aged {age_group}, passionate about "
        f"{' and '.join(demographic.interests) or 'everyday life'}, with a {tone.lower()} and authentic "
        f"personality. They have a natural, relatable presence that connects with their audience. "
        f"Hyper-realistic portrait, positioned with space around for 9:16 vertical crop."
    )

    scenes = [
        Scene(
            id=1,
            title="Hook",
            prompt=(
                f"Opening shot: {person} in their {age_group}s looking directly at camera with an intrigued "
                f"expression, about to share something exciting. {tone} lighting and modern setting. "
                f"Hyper-realistic, positioned for 9:16 crop with headroom."
            ),
            dialogue='"Wait, you NEED to see this..."',
            motion="Slow zoom-in on face",
            transition="Smooth cut",
            duration=3,
        ),
        Scene(
            id=2,
            title="Problem",
            prompt=(
                f"The creator shows a common frustration that {age_group} year olds face related to "
                f"{first_interest or 'daily life'}. Authentic, relatable moment. Medium shot with room "
                f"for vertical crop."
            ),
            dialogue='"I used to struggle with this all the time..."',
            motion="Slight pan left to right",
            transition="Quick cut",
            duration=4,
        ),
        Scene(
            id=3,
            title="Solution",
            prompt=(
                f"Reveal of {product.name}. The creator's face lights up as they hold the product. Clean "
                f"product shot with {tone.lower()} presentation style. Full body or 3/4 shot for 9:16 framing."
            ),
            dialogue=f'"Then I found the {product.name}!"',
            motion="Dynamic reveal with zoom",
            transition="Fade transition",
            duration=4,
        ),
        Scene(
            id=4,
            title="Testimonial",
            prompt=(
                f"The creator demonstrates {product.name} in action. Close-up shots of key features "
                f"interspersed with reaction shots. Natural, unscripted feel showing genuine appreciation."
            ),
            dialogue='"Look at how easy this is... and the quality is incredible!"',
            motion="Close-up shots with smooth transitions",
            transition="Quick cuts between angles",
            duration=5,
        ),
        Scene(
            id=5,
            title="Call to Action",
            prompt=(
                f"The creator enthusiastically recommends {product.name}. Direct eye contact, genuine smile, "
                f"and clear call to action. Product visible in frame. Centered composition for 9:16."
            ),
            dialogue='"Link in bio - trust me, you won\'t regret it!"',
            motion="Hold on face, slight zoom",
            transition="Fade to end card",
            duration=3,
        ),
    ]

    return {
        "productPrompt": product_prompt,
        "characterPrompt": character_prompt,
        "scenes": scenes,
    }


def get_placeholder_urls(kind: str) -> List[str]:
    """Fixed placeholder images for 'character' or 'product_shot' candidates."""
    if kind == "character":
        return list(PLACEHOLDER_CHARACTER_URLS)
    return list(PLACEHOLDER_PRODUCT_SHOT_URLS)
