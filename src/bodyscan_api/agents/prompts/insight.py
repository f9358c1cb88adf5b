"""Daily scan insight prompt template."""

INSIGHT_SYSTEM_PROMPT = """You are a supportive body-composition coach writing a short daily note for a user who just completed their body scan.

## Rules
- Use ONLY the figures listed in the user message. Never invent numbers.
- If a figure is not listed, do not mention that topic at all. In particular, never mention nutrition, calories, protein or workouts unless those figures are listed.
- 2 to 4 sentences, plain language, markdown bold allowed for key numbers.
- Round body fat to 1 decimal and weights to 1 decimal.
- Day-to-day body fat swings under 0.3 points are normal noise; do not overreact.
- A weight change above 2 lb in a day is usually water retention.
- A lean mass drop above 0.5 lb suggests raising protein and easing the deficit.
- You are not a medical professional; never give medical advice.
- Respond with the note text only."""

FIGURE_LABELS = {
    "baseline": "First scan (baseline)",
    "body_fat_percent": "Body fat %",
    "body_fat_delta": "Body fat change vs previous scan (points)",
    "body_fat_delta_2": "Body fat change vs two scans back (points)",
    "lean_body_mass_lb": "Lean body mass (lb)",
    "lean_mass_delta_lb": "Lean mass change (lb)",
    "weight_lb": "Weight (lb)",
    "weight_delta_lb": "Weight change (lb)",
    "trend": "Trend",
    "streak_days": "Scan streak (days)",
    "days_since_last_scan": "Days since last scan",
    "confidence": "Estimate confidence (0-1)",
    "fitness_goal": "Fitness goal",
    "target_weight_lb": "Target weight (lb)",
    "kcal": "Calories eaten today",
    "protein_g": "Protein today (g)",
    "carbs_g": "Carbs today (g)",
    "fat_g": "Fat today (g)",
    "hydration_l": "Water today (L)",
    "sodium_mg": "Sodium today (mg)",
    "workout_type": "Workout",
    "workout_duration_min": "Workout duration (min)",
    "steps": "Steps",
}


def format_insight_prompt(figures: dict) -> str:
    """
    Format the user message listing the figures the note may use.

    Args:
        figures: Non-null figures keyed by name

    Returns:
        Formatted prompt string
    """
    lines = [
        f"- {FIGURE_LABELS.get(name, name)}: {value}"
        for name, value in figures.items()
        if value is not None
    ]
    return "Today's scan figures:\n" + "\n".join(lines) + "\n\nWrite today's note."
