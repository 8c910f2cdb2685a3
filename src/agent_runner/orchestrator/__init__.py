"""Agent run orchestrator for external CLI coding agents.

One invocation is one run: acquire the executor lock, select a provider,
provision a git worktree, build the task brief, run the agent and classify
its exit. Coordination between invocations happens only through two small
JSON documents (lock table and provider/run state) on the local filesystem.

Why not a job queue or a lock service?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Runs are long, supervised, human-adjacent sessions started one at a time by
an operator or a chat integration. There is never more than one pending run,
so the only coordination needed is "do not start a second implement run while
one is active" plus "do not pick a provider that just rate-limited us". A
TTL'd record in a JSON file covers both for a single-host tool.
"""
