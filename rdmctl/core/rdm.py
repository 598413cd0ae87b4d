"""RDM (E1.20) protocol constants used by the transaction driver."""

from __future__ import annotations

from enum import IntEnum

PID_QUEUED_MESSAGE = 0x0020
PID_STATUS_MESSAGES = 0x0030

# Status type selector sent with a QUEUED_MESSAGE GET.
STATUS_NONE = 0x00
STATUS_GET_LAST_MESSAGE = 0x01
STATUS_ADVISORY = 0x02
STATUS_WARNING = 0x03
STATUS_ERROR = 0x04

ESTA_MANUFACTURER_ID = 0x0000
ALL_DEVICES_ID = 0xFFFFFFFF
ROOT_DEVICE = 0
ALL_SUB_DEVICES = 0xFFFF


class RdmResponseCode(IntEnum):
    """Outcome of a request as reported by the gateway."""

    COMPLETED_OK = 0
    WAS_BROADCAST = 1
    FAILED_TO_SEND = 2
    TIMEOUT = 3
    INVALID_RESPONSE = 4
    UNKNOWN_UID = 5
    CHECKSUM_INCORRECT = 6
    TRANSACTION_MISMATCH = 7
    SUB_DEVICE_MISMATCH = 8
    SRC_UID_MISMATCH = 9
    DEST_UID_MISMATCH = 10
    WRONG_SUB_START_CODE = 11
    PACKET_TOO_SHORT = 12
    PACKET_LENGTH_MISMATCH = 13
    PARAM_LENGTH_MISMATCH = 14
    INVALID_COMMAND = 15
    COMMAND_CLASS_MISMATCH = 16
    INVALID_RESPONSE_TYPE = 17
    DISCOVERY_NOT_SUPPORTED = 18
    DUB_RESPONSE = 19


class RdmResponseType(IntEnum):
    ACK = 0x00
    ACK_TIMER = 0x01
    NACK_REASON = 0x02
    ACK_OVERFLOW = 0x03


class NackReason(IntEnum):
    UNKNOWN_PID = 0x0000
    FORMAT_ERROR = 0x0001
    HARDWARE_FAULT = 0x0002
    PROXY_REJECT = 0x0003
    WRITE_PROTECT = 0x0004
    UNSUPPORTED_COMMAND_CLASS = 0x0005
    DATA_OUT_OF_RANGE = 0x0006
    BUFFER_FULL = 0x0007
    PACKET_SIZE_UNSUPPORTED = 0x0008
    SUB_DEVICE_OUT_OF_RANGE = 0x0009
    PROXY_BUFFER_FULL = 0x000A


_RESPONSE_CODE_TEXT = {
    RdmResponseCode.COMPLETED_OK: "Completed Ok",
    RdmResponseCode.WAS_BROADCAST: "Request was broadcast",
    RdmResponseCode.FAILED_TO_SEND: "Failed to send request",
    RdmResponseCode.TIMEOUT: "Response Timeout",
    RdmResponseCode.INVALID_RESPONSE: "Invalid Response",
    RdmResponseCode.UNKNOWN_UID: "Unknown UID",
    RdmResponseCode.CHECKSUM_INCORRECT: "Incorrect checksum",
    RdmResponseCode.TRANSACTION_MISMATCH: "Transaction number mismatch",
    RdmResponseCode.SUB_DEVICE_MISMATCH: "Wrong sub device",
    RdmResponseCode.SRC_UID_MISMATCH: "Source UID in response doesn't match",
    RdmResponseCode.DEST_UID_MISMATCH: "Destination UID in response doesn't match",
    RdmResponseCode.WRONG_SUB_START_CODE: "Incorrect sub start code",
    RdmResponseCode.PACKET_TOO_SHORT: "RDM response was smaller than the minimum size",
    RdmResponseCode.PACKET_LENGTH_MISMATCH: "The length field of packet didn't match length received",
    RdmResponseCode.PARAM_LENGTH_MISMATCH: "The parameter length exceeds the remaining packet size",
    RdmResponseCode.INVALID_COMMAND: "The command class was not one of GET_RESPONSE or SET_RESPONSE",
    RdmResponseCode.COMMAND_CLASS_MISMATCH: "The command class didn't match the request",
    RdmResponseCode.INVALID_RESPONSE_TYPE: "The response type was not ACK, ACK_OVERFLOW, ACK_TIMER or NACK",
    RdmResponseCode.DISCOVERY_NOT_SUPPORTED: "The output plugin does not support DISCOVERY commands",
    RdmResponseCode.DUB_RESPONSE: "DUB response",
}

_NACK_REASON_TEXT = {
    NackReason.UNKNOWN_PID: "Unknown pid",
    NackReason.FORMAT_ERROR: "Format error",
    NackReason.HARDWARE_FAULT: "Hardware fault",
    NackReason.PROXY_REJECT: "Proxy reject",
    NackReason.WRITE_PROTECT: "Write protect",
    NackReason.UNSUPPORTED_COMMAND_CLASS: "Unsupported command class",
    NackReason.DATA_OUT_OF_RANGE: "Data out of range",
    NackReason.BUFFER_FULL: "Buffer full",
    NackReason.PACKET_SIZE_UNSUPPORTED: "Packet size unsupported",
    NackReason.SUB_DEVICE_OUT_OF_RANGE: "Sub device out of range",
    NackReason.PROXY_BUFFER_FULL: "Proxy buffer full",
}


def response_code_to_string(code: int) -> str:
    try:
        return _RESPONSE_CODE_TEXT[RdmResponseCode(code)]
    except ValueError:
        return f"Unknown response code {code}"


def nack_reason_to_string(reason: int | None) -> str:
    if reason is None:
        return "Unknown NACK reason"
    try:
        return _NACK_REASON_TEXT[NackReason(reason)]
    except ValueError:
        return f"Unknown NACK reason: 0x{reason:04x}"
