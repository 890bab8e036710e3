from .message.protocol import Event, EventType, Frame, Intent, IntentType, ProtocolError, parse_intent

__all__ = ['Event', 'EventType', 'Frame', 'Intent', 'IntentType', 'ProtocolError', 'parse_intent']
