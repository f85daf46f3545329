"""
Import pipeline for exported chat archives.

Format parsers (ChatGPT, Claude, Gemini, Qwen, WhatsApp) live in this
package and are dispatched by db.importers.registry.ParserRegistry.
"""
