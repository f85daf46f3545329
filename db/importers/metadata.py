"""
Metadata schema for the built-in format parsers.

Describes what each parser accepts; exposed through
ParserRegistry.metadata() for callers that list supported formats.
"""

from typing import Dict, List, Any
from dataclasses import dataclass, field


@dataclass
class ExtractorMetadata:
    """Metadata for a format parser."""

    # Basic information
    name: str  # Human-readable name (e.g., "ChatGPT")
    version: str  # Semantic version (e.g., "1.0.0")
    description: str  # What this parser handles

    # Format information
    supported_extensions: List[str] = field(default_factory=lambda: [])  # e.g., [".json"]

    # Capabilities
    capabilities: Dict[str, Any] = field(default_factory=dict)  # Feature flags

    # Format specification
    format_spec: Dict[str, Any] = field(default_factory=dict)  # Expected input format

    def to_dict(self) -> Dict[str, Any]:
        """Convert metadata to dictionary."""
        return {
            'name': self.name,
            'version': self.version,
            'description': self.description,
            'supported_extensions': self.supported_extensions,
            'capabilities': self.capabilities,
            'format_spec': self.format_spec,
        }


# Keyed by FileFormat value
DEFAULT_METADATA: Dict[str, ExtractorMetadata] = {
    'chatgpt': ExtractorMetadata(
        name='ChatGPT',
        version='1.0.0',
        description='Flattens ChatGPT\'s node-based mapping structure into chronological messages.',
        supported_extensions=['.json'],
        capabilities={'auto_detect': True, 'tree_flattening': True, 'code_hint': True},
        format_spec={
            'input_type': 'dict or list',
            'structure': 'Conversation dict with "mapping" key containing node_id -> node_data',
            'required_fields': ['conversation_id', 'mapping'],
            'max_nodes': 100000,
            'skipped_roles': ['system'],
        },
    ),
    'claude': ExtractorMetadata(
        name='Claude',
        version='1.0.0',
        description='Extracts messages from Claude\'s chat_messages list format, including attachments.',
        supported_extensions=['.json'],
        capabilities={'auto_detect': True, 'attachments': True},
        format_spec={
            'input_type': 'dict or list',
            'structure': 'Conversations with uuid and chat_messages; each message has sender and text',
            'required_fields': ['uuid', 'created_at', 'updated_at', 'chat_messages'],
            'sender_mapping': 'human -> User, assistant -> Claude',
        },
    ),
    'gemini': ExtractorMetadata(
        name='Google Gemini',
        version='1.0.0',
        description='Extracts messages from Gemini standard exports and Google Takeout exports.',
        supported_extensions=['.json'],
        capabilities={'auto_detect': True, 'takeout': True},
        format_spec={
            'input_type': 'dict or list',
            'structure': '{"conversations": [...]} or Takeout objects with creator/content messages',
            'required_fields': ['conversation_id|id', 'create_time|created_date', 'messages'],
            'author_mapping': 'gemini/bard/model/assistant/ai -> Gemini, user/human/you -> User',
        },
    ),
    'qwen': ExtractorMetadata(
        name='Qwen',
        version='1.0.0',
        description='Extracts messages from Qwen JSON exports and timestamped text logs.',
        supported_extensions=['.json', '.txt', '.log'],
        capabilities={'auto_detect': True, 'text_logs': True, 'multilingual_roles': True},
        format_spec={
            'input_type': 'dict, list or text',
            'structure': 'conversation_id/session_id with messages, chat_history or dialogue',
            'message_fields': ['role|sender|author', 'content|text|message', 'timestamp|time|created_at'],
            'text_log_patterns': [
                'YYYY-MM-DD HH:MM:SS role: text',
                '[YYYY-MM-DD HH:MM:SS] role: text',
                'role (date-time): text',
                'role: YYYY-MM-DD HH:MM:SS text',
            ],
        },
    ),
    'whatsapp': ExtractorMetadata(
        name='WhatsApp',
        version='1.0.0',
        description='Extracts messages from WhatsApp chat exports.',
        supported_extensions=['.txt'],
        capabilities={'auto_detect': True, 'multiline_messages': True},
        format_spec={
            'input_type': 'text',
            'structure': 'One message per line, continuation lines append to the previous message',
            'line_formats': ['[dd/mm/yyyy, hh:mm] Name: text', 'dd/mm/yyyy, hh:mm - Name: text'],
            'date_order': 'day-first, month-first fallback',
        },
    ),
}
