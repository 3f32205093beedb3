"""
DNS discovery records for published projects.
"""

from .dns_records import DigitalOceanDNS, DnsReconciler, DNSRecord
from .dns_verifier import PublishedRecordVerifier

__all__ = ['DigitalOceanDNS', 'DnsReconciler', 'DNSRecord', 'PublishedRecordVerifier']
