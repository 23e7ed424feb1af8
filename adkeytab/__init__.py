"""adkeytab — Active Directory join and shared keytab lifecycle.

Joins a host to AD once, provisions a Kerberos keytab, and keeps it valid
across machine-account password rotation for every process that shares it.
"""

__version__ = "0.1.0"
