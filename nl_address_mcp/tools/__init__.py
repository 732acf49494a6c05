"""
Tool modules registered on the MCP server.
"""
