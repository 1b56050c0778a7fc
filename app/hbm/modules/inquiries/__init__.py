"""
Inquiries module.

- Public/customer submission (customers may create and read)
- Staff-driven status workflow (NEW -> ACCEPTED/REJECTED -> IN_PROGRESS -> CLOSED)
- Every status change is written to the status ledger in the same transaction
"""
