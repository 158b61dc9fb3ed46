"""
Shared prompt assembly for suggestion generation.

Both strategies share one content style section. Precedence is fixed: the
account's voice and literal sample posts come first and win any conflict,
then explicit rules grouped never/always/prefer/tone, and the statistical
writing style summary is only used when neither voice nor samples exist.
"""
from typing import Dict, List, Optional, Sequence
from dataclasses import dataclass

ANGLES = ("hot_take", "roast", "hype", "story", "teach", "question")
LENGTHS = ("short", "medium", "long")
RULE_GROUPS = (
    ("never", "NEVER"),
    ("always", "ALWAYS"),
    ("prefer", "PREFER"),
    ("tone", "TONE"),
)

ANGLE_DEFINITIONS = """Angle definitions:
- hot_take: Bold, contrarian opinion that challenges conventional wisdom
- roast: Playful criticism or calling out something (not mean-spirited)
- hype: Enthusiastic, positive energy about something exciting
- story: Personal narrative or anecdote with a lesson
- teach: Educational content that explains a concept clearly
- question: Thought-provoking question that sparks discussion

Length targets:
- short: ~100-150 characters (brief and punchy)
- medium: ~200-300 characters (standard post length)
- long: ~400-500 characters (detailed, thoughtful)"""

FORMATTING_REQUIREMENTS = """FORMATTING REQUIREMENTS:
- Use line breaks (newlines) to separate ideas and create natural paragraphs
- Most posts should have 2-4 short paragraphs, not one dense block
- Example format:
  Opening thought or hook

  Supporting point or expansion

  Closing statement or call-to-action"""


@dataclass
class SampleExample:
    content: str
    notes: Optional[str] = None


@dataclass
class RuleSpec:
    rule_type: str
    content: str
    priority: int = 0


@dataclass
class TopicSignal:
    """A topic worth writing about, with the evidence behind it"""
    topic: str
    mention_count: int = 0
    total_engagement: float = 0.0
    context: Optional[str] = None


@dataclass
class PromptPost:
    """A network post shown to the model, addressed by its index in the prompt"""
    network_post_id: int
    external_post_id: str
    content: str
    engagement_score: float
    author_username: Optional[str] = None


@dataclass
class SuggestionSlot:
    angle: str
    length: str


def _platform_name(platform: str) -> str:
    return "social media" if platform == "ghost" else platform


class PromptBuilder:
    """Builds system and user prompts for both generation strategies"""

    def build_content_style_section(self, voice: Optional[str], samples: Sequence[SampleExample], rules: Sequence[RuleSpec]) -> str:
        sections: List[str] = []
        has_voice = bool(voice and voice.strip())

        if has_voice or samples:
            lines = ["CRITICAL - YOUR #1 PRIORITY:"]
            if has_voice:
                lines.append(
                    f"\nYou MUST write in this exact voice and style:\n{voice.strip()}\n\n"
                    "This voice is non-negotiable. Every word must reflect this style."
                )
            if samples:
                lines.append("\nYou MUST match the tone, style, and patterns from these example posts:")
                for index, sample in enumerate(samples):
                    lines.append(f"\nExample {index + 1}:\n\"{sample.content}\"")
                    if sample.notes:
                        lines.append(f"Key insight: {sample.notes}")
                lines.append(
                    "\nStudy these examples carefully. Copy the voice, rhythm, word choice, and personality. "
                    "This is your PRIMARY instruction."
                )
            lines.append(
                "\nIf there is ANY conflict between these voice instructions and the guidelines below, "
                "ALWAYS prioritize matching the voice and examples above."
            )
            sections.append("\n".join(lines))

        if rules:
            grouped: Dict[str, List[RuleSpec]] = {}
            for rule in sorted(rules, key=lambda r: -(r.priority or 0)):
                grouped.setdefault(rule.rule_type, []).append(rule)
            lines = ["IMPORTANT RULES - You must follow these:"]
            for rule_type, heading in RULE_GROUPS:
                if grouped.get(rule_type):
                    lines.append(f"\n{heading}:")
                    lines.extend(f"- {rule.content}" for rule in grouped[rule_type])
            sections.append("\n".join(lines))

        return "\n\n".join(sections)

    def build_writing_style_fallback(self, writing_style, has_voice: bool, has_samples: bool) -> str:
        """Statistical style summary; empty when voice or samples are available"""
        if writing_style is None or has_voice or has_samples:
            return ""

        lines = [
            "Writing Style Analysis:",
            f"- Tone: {writing_style.tone or 'casual and conversational'}",
            f"- Typical length: {writing_style.avg_length or 'medium'} characters",
            f"- Style: {writing_style.style_summary or 'Natural and authentic'}",
        ]
        if (writing_style.emoji_frequency or 0) > 0.5:
            lines.append("- Often uses emojis")
        if (writing_style.hashtag_frequency or 0) > 0.3:
            lines.append("- Sometimes includes relevant hashtags")
        if writing_style.common_phrases:
            lines.append(f"- Frequently uses phrases like: {', '.join(writing_style.common_phrases[:3])}")
        return "\n".join(lines)

    def build_network_system_prompt(self, platform: str, voice, samples, rules, writing_style) -> str:
        has_voice = bool(voice and voice.strip())
        parts = [f"You are a social media ghostwriter that creates engaging {_platform_name(platform)} post suggestions."]
        style = self.build_content_style_section(voice, samples, rules)
        if style:
            parts.append(style)
        fallback = self.build_writing_style_fallback(writing_style, has_voice, bool(samples))
        if fallback:
            parts.append(fallback)
        parts.append("Your goal is to suggest posts that will get high engagement and match the user's authentic voice.")
        parts.append(FORMATTING_REQUIREMENTS)
        parts.append(
            "Return suggestions as JSON:\n"
            "{\n"
            "  \"suggestions\": [\n"
            "    {\n"
            "      \"type\": \"original_post|reply\",\n"
            "      \"source_post_id\": \"id of the post being replied to (replies only)\",\n"
            "      \"content\": \"The post text with natural line breaks\",\n"
            "      \"reasoning\": \"Why this will resonate\",\n"
            "      \"angle\": \"hot_take|roast|hype|story|teach|question\",\n"
            "      \"length\": \"short|medium|long\",\n"
            "      \"topics\": [\"topic1\", \"topic2\"],\n"
            "      \"inspired_by_posts\": [0, 3]\n"
            "    }\n"
            "  ]\n"
            "}"
        )
        return "\n\n".join(parts)

    def build_interest_system_prompt(self, platform: str, voice, samples, rules) -> str:
        parts = [
            f"You are a social media ghostwriter that creates engaging {_platform_name(platform)} "
            "post suggestions based on the user's interests."
        ]
        style = self.build_content_style_section(voice, samples, rules)
        if style:
            parts.append(style)
        parts.append(
            "Your goal is to suggest posts that:\n"
            "1. Match the user's voice perfectly (top priority)\n"
            "2. Align with their stated interests\n"
            "3. Will get high engagement and start conversations"
        )
        parts.append(FORMATTING_REQUIREMENTS)
        parts.append(
            "Return suggestions as JSON:\n"
            "{\n"
            "  \"suggestions\": [\n"
            "    {\n"
            "      \"content\": \"The post text with natural line breaks\",\n"
            "      \"reasoning\": \"Why this matches their interests and voice\",\n"
            "      \"angle\": \"hot_take|roast|hype|story|teach|question\",\n"
            "      \"length\": \"short|medium|long\",\n"
            "      \"topics\": [\"topic1\", \"topic2\"]\n"
            "    }\n"
            "  ]\n"
            "}"
        )
        return "\n\n".join(parts)

    @staticmethod
    def _slots_section(slots: Sequence[SuggestionSlot]) -> str:
        lines = ["Each suggestion should follow these specific angles and lengths:"]
        lines.extend(f"{i + 1}. Angle: \"{slot.angle}\", Length: \"{slot.length}\"" for i, slot in enumerate(slots))
        return "\n".join(lines) + "\n\n" + ANGLE_DEFINITIONS

    def build_network_user_prompt(
        self,
        posts: Sequence[PromptPost],
        topics: Sequence[TopicSignal],
        topics_of_interest: Optional[str],
        slots: Sequence[SuggestionSlot],
    ) -> str:
        count = len(slots)
        parts = [f"Generate {count} post suggestions that match the user's voice and interests."]

        if topics_of_interest and topics_of_interest.strip():
            parts.append(
                "USER'S TOPICS OF INTEREST - These are the main topics the user wants to write about:\n"
                f"{topics_of_interest.strip()}"
            )

        if topics:
            lines = ["OPTIONAL INSPIRATION - Trending topics in their network:"]
            for topic in topics:
                line = f"- {topic.topic} ({topic.mention_count} mentions, {topic.total_engagement:g} total engagement)"
                if topic.context:
                    line += f": {topic.context}"
                lines.append(line)
            parts.append("\n".join(lines))

        if posts:
            lines = [
                "OPTIONAL INSPIRATION - High-engagement posts from their network:",
                "If you draw inspiration from any of these posts, include their index numbers in the "
                "\"inspired_by_posts\" array. To suggest a reply, set \"type\" to \"reply\" and "
                "\"source_post_id\" to the post's id.",
            ]
            for index, post in enumerate(posts):
                excerpt = post.content[:150] + ("..." if len(post.content) > 150 else "")
                lines.append(f"[{index}] (id: {post.external_post_id}) \"{excerpt}\" ({post.engagement_score:g} engagement)")
            parts.append("\n".join(lines))
        else:
            parts.append(
                "NO NETWORK POSTS AVAILABLE - Create original suggestions based only on the user's voice, "
                "style, and interests. Do not include \"inspired_by_posts\" or replies."
            )

        parts.append(self._slots_section(slots))
        parts.append(
            f"Create {count} diverse post suggestions that:\n"
            "1. MUST match the user's voice and style (top priority)\n"
            "2. MUST match the specified angle and length for each suggestion\n"
            "3. CAN optionally draw inspiration from trending topics if relevant to the user's interests\n"
            "4. Should feel authentic and natural to how the user writes"
        )
        return "\n\n".join(parts)

    def build_interest_user_prompt(
        self,
        topics_of_interest: Optional[str],
        topics: Sequence[TopicSignal],
        slots: Sequence[SuggestionSlot],
    ) -> str:
        count = len(slots)
        parts = [
            f"Generate {count} post suggestions based on these topics the user likes to write about:\n\n"
            f"{(topics_of_interest or '').strip() or 'General themes from the example posts'}"
        ]
        if topics:
            lines = ["Here are some trending topics related to these areas (use for inspiration):"]
            for index, topic in enumerate(topics):
                context = f", context: {topic.context}" if topic.context else ""
                lines.append(f"{index + 1}. {topic.topic} ({topic.mention_count} mentions{context})")
            parts.append("\n".join(lines))

        parts.append(self._slots_section(slots))
        parts.append(
            f"Create {count} diverse post suggestions that:\n"
            "1. Match the specified angle and length for each\n"
            "2. Are likely to start conversations\n"
            "3. Feel authentic to the user's style\n"
            "4. Show expertise and unique perspective"
        )
        return "\n\n".join(parts)

    @staticmethod
    def build_topic_inference_prompt(samples: Sequence[SampleExample]) -> str:
        plural = "s" if len(samples) > 1 else ""
        numbered = "\n".join(f"{i + 1}. \"{sample.content}\"" for i, sample in enumerate(samples))
        return (
            f"Based on these {len(samples)} social media post{plural}, identify 3-5 main topics or themes "
            "this person likes to write about. Be specific and concise.\n\n"
            f"Post{plural}:\n{numbered}\n\n"
            "List the topics as a comma-separated list (e.g., \"AI and technology, startup culture, product design\"). "
            "Keep it under 200 characters."
        )


prompt_builder = PromptBuilder()
