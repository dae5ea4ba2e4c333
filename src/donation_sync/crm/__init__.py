"""CRM-facing layer -- canonical donor records and the downstream sinks.

- schemas: CrmAccount, CrmContact, CrmDonation, CrmRecurringDonation
- adapter: DonorSink / DonationSink interfaces
- http: HttpCrmSink (CRM bridge relay) and LoggingCrmSink
"""

from src.donation_sync.crm.adapter import DonationSink, DonorSink
from src.donation_sync.crm.http import HttpCrmSink, LoggingCrmSink

__all__ = ["DonationSink", "DonorSink", "HttpCrmSink", "LoggingCrmSink"]
