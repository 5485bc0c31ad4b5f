"""
Tool Integration Layer.

Adapters the model can reach through the dispatcher: local actions, the
Redmine and GitLab REST APIs, and any remote MCP server listed in the MCP
config file.
"""
