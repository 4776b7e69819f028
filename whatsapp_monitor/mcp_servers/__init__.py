"""MCP servers exposing the WhatsApp monitor to agents."""
