"""
Operator tools for logvault.

- offsets: show recovered resume offsets without consuming
"""
