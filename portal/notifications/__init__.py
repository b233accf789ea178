"""
Fire-and-forget side records written alongside portal mutations:
- auditLogs: who did what to which resource
- emailQueue: plain documents picked up later by a mail delivery worker
"""
