"""Canned, keyword-matched assistant for procedure questions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Literal, Optional


class ChatTopic(str, Enum):
    PROCEDURES = "procedures"
    EXPERIENCES = "experiences"
    PERFORMANCE = "performance"


TOPIC_LABELS = {
    ChatTopic.PROCEDURES: "Standard Operating Procedures",
    ChatTopic.EXPERIENCES: "Operating Experiences",
    ChatTopic.PERFORMANCE: "Human Performance Tools",
}

_SAFETY_WORDS = ("safety", "precaution")
_TIME_WORDS = ("time", "schedule", "duration")
_TOOL_WORDS = ("tools", "equipment")


def welcome_message(topic: ChatTopic, work_order_type: str, service_level: str) -> str:
    if topic is ChatTopic.PROCEDURES:
        return (
            "Welcome! I'm here to help you with Standard Operating Procedures for "
            f"{work_order_type} work orders. What would you like to know?"
        )
    if topic is ChatTopic.EXPERIENCES:
        return (
            "Welcome! I'm here to help you with Operating Experiences for "
            f"{service_level} service level work orders. What would you like to know?"
        )
    return (
        "Welcome! I'm here to help you with Human Performance Tools related to this "
        "work order. What would you like to know?"
    )


def generate_response(
    topic: ChatTopic,
    text: str,
    *,
    work_order_type: str = "this type of",
    service_level: str = "the current",
) -> str:
    """Pick a canned answer by keyword; no state, no network."""
    lowered = text.lower()

    if any(word in lowered for word in _SAFETY_WORDS):
        return {
            ChatTopic.PROCEDURES: (
                f"For {work_order_type} work orders, safety protocols include wearing "
                "appropriate PPE, following lockout/tagout procedures, and ensuring proper "
                "ventilation in confined spaces."
            ),
            ChatTopic.EXPERIENCES: (
                f"Based on previous {service_level} service level experiences, we recommend "
                "double-checking all safety equipment before starting work and ensuring a "
                "safety supervisor is present during critical operations."
            ),
            ChatTopic.PERFORMANCE: (
                "Human performance tools related to safety include pre-job briefings, "
                "three-way communication for critical steps, and the STAR method (Stop, "
                "Think, Act, Review) when encountering unexpected conditions."
            ),
        }[topic]

    if any(word in lowered for word in _TIME_WORDS):
        return {
            ChatTopic.PROCEDURES: (
                f"Standard procedures for {work_order_type} work orders typically require "
                "4-8 hours to complete, depending on complexity and system accessibility."
            ),
            ChatTopic.EXPERIENCES: (
                f"For {service_level} service level, work orders are typically scheduled "
                "with a 24-48 hour completion window, with priority given to "
                "safety-critical systems."
            ),
            ChatTopic.PERFORMANCE: (
                "To optimize time management, we recommend time-boxing, clear milestones, "
                "and using the 'take a minute' tool before rushing critical decisions."
            ),
        }[topic]

    if any(word in lowered for word in _TOOL_WORDS):
        return {
            ChatTopic.PROCEDURES: (
                f"{work_order_type} work orders require calibrated measurement tools, "
                "inspection equipment, and specialized tooling that must be requested "
                "24 hours in advance."
            ),
            ChatTopic.EXPERIENCES: (
                f"For {service_level} service level work, dedicated toolkits are kept in "
                "the service center. Contact logistics to reserve the required equipment."
            ),
            ChatTopic.PERFORMANCE: (
                "Tool management is critical for human performance. Use tool control logs, "
                "pre-staged tool layouts, and verification steps so every tool is "
                "accounted for."
            ),
        }[topic]

    return (
        f"I don't have specific information about that for {TOPIC_LABELS[topic]}. "
        "Could you please ask something about safety protocols, scheduling, or required tools?"
    )


@dataclass
class ChatMessage:
    role: Literal["user", "assistant"]
    content: str


@dataclass
class ChatTranscript:
    """One conversation in the assistant overlay."""

    topic: ChatTopic
    work_order_type: str = "this type of"
    service_level: str = "the current"
    messages: List[ChatMessage] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.messages:
            self.messages.append(
                ChatMessage(
                    "assistant",
                    welcome_message(self.topic, self.work_order_type, self.service_level),
                )
            )

    def ask(self, text: str) -> Optional[ChatMessage]:
        """Record a question and the canned reply; blank input is ignored."""
        if not text.strip():
            return None
        self.messages.append(ChatMessage("user", text))
        reply = ChatMessage(
            "assistant",
            generate_response(
                self.topic,
                text,
                work_order_type=self.work_order_type,
                service_level=self.service_level,
            ),
        )
        self.messages.append(reply)
        return reply
