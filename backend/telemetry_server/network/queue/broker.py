from dramatiq.broker import MessageProxy
from dramatiq.brokers.stub import StubBroker

__all__ = ['EagerBroker', 'StubBroker']


class EagerBroker(StubBroker):
    """Runs actors inline at enqueue time, used by tests and debuggers"""

    def process_message(self, message):
        message_proxy = MessageProxy(message=message)
        self.emit_before('process_message', message_proxy)
        result = None
        exception = None
        try:
            actor = self.get_actor(message.actor_name)
            result = actor(*message.args, **message.kwargs)
        except Exception as exc:
            exception = exc
            message_proxy.stuff_exception(exc)
            message_proxy.fail()

        self.emit_after('process_message', message_proxy, result=result, exception=exception)

    def enqueue(self, message, *, delay=None):
        self.process_message(message)
        return message
