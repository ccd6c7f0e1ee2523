"""Encodes and decodes peer records as mDNS packets using dnspython.

Wire layout, one service instance per running peer:

    PTR  <service>.local.            -> <instance>.<service>.local.
    TXT  <instance>.<service>.local.    "peer=<base58 id>" "dnsaddr=<multiaddr>"...
    A    <instance>.local.              one per IPv4 address
    AAAA <instance>.local.              one per IPv6 address

The PTR record is the answer; TXT, A and AAAA travel as additional records.
Only the TXT record is needed to rebuild a `PeerRecord`. The instance label
is random so the DNS names do not leak the peer identity.
"""

import logging
import secrets
import string
from typing import List, Optional, Sequence

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rdtypes.ANY.PTR
import dns.rdtypes.ANY.TXT
import dns.rdtypes.IN.A
import dns.rdtypes.IN.AAAA
import dns.rrset

from lanpeers.discovery.errors import DecodeError
from lanpeers.discovery.mdns_config import DEFAULT_SERVICE_TAG
from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId
from lanpeers.peer.peer_record import PeerRecord

_logger = logging.getLogger(__name__)

PEER_ID_KEY = "peer"
ADDRESS_KEY = "dnsaddr"

# Top bit of the question class: the querier asks for a unicast reply.
UNICAST_RESPONSE_BIT = 0x8000
# Same bit on a record class: cache-flush, set by some responders.
CLASS_MASK = 0x7FFF

MAX_TXT_STRING_LENGTH = 255

_INSTANCE_ALPHABET = string.ascii_letters + string.digits


def random_instance_label() -> str:
    """Returns a random DNS label of 32 to 63 alphanumeric characters."""
    length = 32 + secrets.randbelow(32)
    return "".join(secrets.choice(_INSTANCE_ALPHABET) for _ in range(length))


def _is_class_in(rdclass: int) -> bool:
    return (int(rdclass) & CLASS_MASK) == dns.rdataclass.IN


class RecordCodec:
    """Builds and parses the mDNS packets exchanged for one service tag."""

    def __init__(
        self,
        service_tag: str = DEFAULT_SERVICE_TAG,
        instance_label: Optional[str] = None,
    ) -> None:
        """Initializes the RecordCodec.

        Args:
            service_tag: Normalized service tag, e.g. "_p2p._udp".
            instance_label: DNS label naming this peer's service instance.
                A random label is generated if None.

        Raises:
            ValueError: If `service_tag` does not start with '_'.
        """
        if not service_tag.startswith("_"):
            raise ValueError(
                f"service_tag must start with '_', got '{service_tag}'."
            )
        if instance_label is None:
            instance_label = random_instance_label()

        self.__service_name = dns.name.from_text(f"{service_tag}.local.")
        self.__instance_name = dns.name.from_text(
            f"{instance_label}.{service_tag}.local."
        )
        self.__host_name = dns.name.from_text(f"{instance_label}.local.")

    @property
    def service_name(self) -> dns.name.Name:
        """The name queried for, e.g. `_p2p._udp.local.`."""
        return self.__service_name

    @property
    def instance_name(self) -> dns.name.Name:
        """The name of the local peer's service instance."""
        return self.__instance_name

    def encode_query(self) -> bytes:
        """Returns an mDNS query for the service's PTR records."""
        query = dns.message.make_query(
            self.__service_name, dns.rdatatype.PTR, dns.rdataclass.IN
        )
        query.id = 0
        query.flags = 0
        return query.to_wire()

    def encode(
        self,
        record: PeerRecord,
        *,
        query_id: int = 0,
        question: Optional[dns.message.Message] = None,
    ) -> bytes:
        """Encodes `record` as an mDNS response packet.

        Args:
            record: The record to announce.
            query_id: Message id, echoed back for legacy unicast queries.
            question: The query being answered; its questions are echoed,
                as legacy unicast resolvers require.

        Returns:
            The wire-format packet.
        """
        response = dns.message.Message(id=query_id)
        response.flags = dns.flags.QR | dns.flags.AA
        if question is not None:
            for rrset in question.question:
                response.question.append(rrset)

        ptr = dns.rdtypes.ANY.PTR.PTR(
            dns.rdataclass.IN, dns.rdatatype.PTR, self.__instance_name
        )
        response.answer.append(
            dns.rrset.from_rdata(self.__service_name, record.ttl, ptr)
        )

        txt = dns.rdtypes.ANY.TXT.TXT(
            dns.rdataclass.IN, dns.rdatatype.TXT, self.__txt_strings(record)
        )
        response.additional.append(
            dns.rrset.from_rdata(self.__instance_name, record.ttl, txt)
        )

        v4 = sorted({a.ip for a in record.addresses if a.ip_version == 4})
        v6 = sorted({a.ip for a in record.addresses if a.ip_version == 6})
        if v4:
            rdatas = [
                dns.rdtypes.IN.A.A(dns.rdataclass.IN, dns.rdatatype.A, ip)
                for ip in v4
            ]
            response.additional.append(
                dns.rrset.from_rdata_list(self.__host_name, record.ttl, rdatas)
            )
        if v6:
            rdatas = [
                dns.rdtypes.IN.AAAA.AAAA(dns.rdataclass.IN, dns.rdatatype.AAAA, ip)
                for ip in v6
            ]
            response.additional.append(
                dns.rrset.from_rdata_list(self.__host_name, record.ttl, rdatas)
            )

        return response.to_wire()

    def __txt_strings(self, record: PeerRecord) -> List[bytes]:
        strings = [f"{PEER_ID_KEY}={record.peer_id.to_base58()}".encode("ascii")]
        for address in sorted(record.addresses):
            entry = f"{ADDRESS_KEY}={address}".encode("ascii")
            if len(entry) > MAX_TXT_STRING_LENGTH:
                _logger.warning(
                    "Address %s is too long for a TXT string, not announcing it.",
                    address,
                )
                continue
            strings.append(entry)
        return strings

    def parse(self, packet: bytes) -> dns.message.Message:
        """Parses raw bytes into a DNS message.

        Raises:
            DecodeError: If `packet` is not a well-formed DNS message.
        """
        try:
            return dns.message.from_wire(packet)
        except (dns.exception.DNSException, ValueError, UnicodeError) as e:
            raise DecodeError(
                "Malformed DNS packet", {"size": len(packet), "error": str(e)}
            ) from e

    def is_service_query(self, message: dns.message.Message) -> bool:
        """True if `message` is a query asking for this service."""
        if message.flags & dns.flags.QR:
            return False
        return any(self.__asks_for_service(q) for q in message.question)

    def wants_unicast_response(self, message: dns.message.Message) -> bool:
        """True if a service question in `message` has the QU bit set."""
        return any(
            int(q.rdclass) & UNICAST_RESPONSE_BIT
            for q in message.question
            if self.__asks_for_service(q)
        )

    def __asks_for_service(self, question: dns.rrset.RRset) -> bool:
        return (
            question.name == self.__service_name
            and question.rdtype in (dns.rdatatype.PTR, dns.rdatatype.ANY)
            and (
                _is_class_in(question.rdclass)
                or (int(question.rdclass) & CLASS_MASK) == dns.rdataclass.ANY
            )
        )

    def decode_records(self, message: dns.message.Message) -> List[PeerRecord]:
        """Extracts every peer record of this service from a response.

        Instances whose TXT record is missing or carries no valid identity
        are skipped and logged; they never abort the other instances in the
        same packet.
        """
        if not message.flags & dns.flags.QR:
            return []

        rrsets: Sequence[dns.rrset.RRset] = message.answer + message.additional
        records: List[PeerRecord] = []
        seen_instances: set[dns.name.Name] = set()
        for rrset in rrsets:
            if (
                rrset.rdtype != dns.rdatatype.PTR
                or rrset.name != self.__service_name
                or not _is_class_in(rrset.rdclass)
            ):
                continue

            for ptr in rrset:
                instance = ptr.target
                if instance in seen_instances:
                    continue
                seen_instances.add(instance)

                txt = self.__find_txt(rrsets, instance)
                if txt is None:
                    _logger.debug("No TXT record for instance %s.", instance)
                    continue
                try:
                    records.append(
                        self.__record_from_txt(txt, min(rrset.ttl, txt.ttl))
                    )
                except DecodeError as e:
                    _logger.debug("Skipping instance %s: %s", instance, e)
        return records

    def decode(self, packet: bytes) -> PeerRecord:
        """Decodes a single peer record from a response packet.

        Raises:
            DecodeError: If the packet is malformed or holds no valid record
                for this service.
        """
        records = self.decode_records(self.parse(packet))
        if not records:
            raise DecodeError(
                "Packet carries no peer record for this service",
                {"service": self.__service_name.to_text()},
            )
        return records[0]

    @staticmethod
    def __find_txt(
        rrsets: Sequence[dns.rrset.RRset], name: dns.name.Name
    ) -> Optional[dns.rrset.RRset]:
        for rrset in rrsets:
            if (
                rrset.rdtype == dns.rdatatype.TXT
                and rrset.name == name
                and _is_class_in(rrset.rdclass)
            ):
                return rrset
        return None

    def __record_from_txt(self, txt: dns.rrset.RRset, ttl: int) -> PeerRecord:
        peer_id: Optional[PeerId] = None
        addresses: set[PeerAddress] = set()
        for rdata in txt:
            for raw in rdata.strings:
                key, sep, value = raw.decode("ascii", errors="replace").partition("=")
                if not sep:
                    continue
                if key == PEER_ID_KEY:
                    parsed = PeerId.try_parse(value)
                    if parsed is None:
                        raise DecodeError("Unparsable peer identity", {"value": value})
                    if peer_id is not None and parsed != peer_id:
                        raise DecodeError("Conflicting peer identities in TXT record")
                    peer_id = parsed
                elif key == ADDRESS_KEY:
                    address = PeerAddress.try_parse(value)
                    if address is None:
                        _logger.debug("Ignoring unparsable address '%s'.", value)
                        continue
                    addresses.add(address)

        if peer_id is None:
            raise DecodeError("TXT record carries no peer identity")
        return PeerRecord(peer_id, frozenset(addresses), ttl)
