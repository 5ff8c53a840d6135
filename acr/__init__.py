"""Agent Convergence Resource (ACR).

Declarative, idempotent management of one installable, service-backed agent:
 - read the actual state (installed? service running?)
 - plan and apply the minimal stop / install / register / start sequence
 - verify compliance without mutating anything

Each call is self-contained; the caller serialises calls per agent name.
"""
