"""Task coordinator for role-tagged CLI agent instances.

Tasks are routed to idle instances by role affinity, executed by spawning the
instance's external agent in a background thread, and mirrored into a
priority-segmented durable queue.  The in-memory registry is the live source
of truth; the durable store is a best-effort mirror except for the initial
enqueue of unassigned tasks, which is their only durability path.
"""
