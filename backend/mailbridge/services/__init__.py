"""
Workflow services package.

WHY: Services hold the quote workflow and its external collaborators
(workflow engine, PDF source), separated from API routes and from the mail
backends.
"""
