""" The SMS gateway turns machines on and off and reaches the users.

Messages are sent through MessageWay (https://msgway.com). Outside of
production the gateway is wrapped by :class:`DevelopmentGateway`, which
either re-targets every message to a developer's mobile or only logs it.

"""
from __future__ import annotations

import httpx
import logging

from uniwash.context.core import StoppableService
from uniwash.modules import errors


from typing import Any
from typing import NamedTuple
from typing import Protocol
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from uniwash.context.core import Context


log = logging.getLogger('uniwash')


# sender lines of the MessageWay account
DEVICE_PROVIDER = 3
USER_PROVIDER = 5

FAKE_REFERENCE_ID = 'fakeReferenceID'


class Message(NamedTuple):
    template_id: int
    mobile: str
    params: tuple[str, ...] = ()
    provider: int = USER_PROVIDER
    method: str = 'sms'

    def as_payload(self) -> dict[str, Any]:
        return {
            'mobile': self.mobile,
            'method': self.method,
            'templateID': self.template_id,
            'provider': self.provider,
            'params': list(self.params),
        }


class SendResult(NamedTuple):
    reference_id: str
    status: str


class Gateway(Protocol):

    def send(self, message: Message) -> SendResult: ...

    def status(self, reference_id: str) -> dict[str, Any]: ...


class MessageWayGateway(StoppableService):
    """ Talks to the MessageWay api. A single instance is shared by the
    process (see the ``sms_gateway`` service), the underlying connection
    pool is closed when the service is discarded.

    """

    def __init__(
        self,
        api_key: str,
        base_url: str = 'https://api.msgway.com',
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None
    ):
        self.client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={'apiKey': api_key},
            limits=httpx.Limits(
                max_connections=5,
                max_keepalive_connections=5
            ),
            transport=transport
        )

    def stop_service(self) -> None:
        self.client.close()

    def post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.client.post(path, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise errors.Timeout from e
        except (httpx.HTTPError, ValueError) as e:
            log.error('SMS gateway request to %s failed: %s', path, e)
            raise errors.GatewayError from e

        if not isinstance(data, dict):
            raise errors.GatewayError

        return data

    def send(self, message: Message) -> SendResult:
        data = self.post('/send', message.as_payload())

        if data.get('status') != 'success':
            log.error('SMS gateway refused message: %r', data)
            raise errors.GatewayError

        return SendResult(str(data.get('referenceID', '')), data['status'])

    def status(self, reference_id: str) -> dict[str, Any]:
        return self.post('/status', {'OTPReferenceID': reference_id})


class DevelopmentGateway(StoppableService):
    """ Wraps the real gateway outside of production.

    If a developer mobile is configured, all messages are sent there instead
    of to their recipient. Otherwise, nothing is sent and the message is
    logged, the result carrying a fake reference id.

    """

    def __init__(
        self,
        gateway: Gateway | None,
        developer_mobile: str | None = None
    ):
        self.gateway = gateway
        self.developer_mobile = developer_mobile

    @property
    def retargets(self) -> bool:
        return bool(self.gateway is not None and self.developer_mobile)

    def stop_service(self) -> None:
        if isinstance(self.gateway, StoppableService):
            self.gateway.stop_service()

    def send(self, message: Message) -> SendResult:
        if not self.retargets:
            log.info('sending message with this payload => %r', message)
            return SendResult(FAKE_REFERENCE_ID, 'success')

        assert self.gateway is not None and self.developer_mobile
        log.info(
            're-targeting message for %s to %s',
            message.mobile, self.developer_mobile
        )
        return self.gateway.send(
            message._replace(mobile=self.developer_mobile))

    def status(self, reference_id: str) -> dict[str, Any]:
        if not self.retargets or reference_id == FAKE_REFERENCE_ID:
            return {'status': 'success', 'data': {'OTPStatus': 'delivered'}}

        assert self.gateway is not None
        return self.gateway.status(reference_id)


def new_gateway(context: Context) -> Gateway:
    """ Creates the gateway configured on the given context. """

    api_key = context.get_setting('sms.api_key')

    gateway = None
    if api_key:
        gateway = MessageWayGateway(
            api_key,
            base_url=context.get_setting('sms.base_url'),
            timeout=context.get_setting('sms.timeout')
        )

    if context.get_setting('production'):
        if gateway is None:
            raise errors.MissingSetting('sms.api_key')
        return gateway

    return DevelopmentGateway(
        gateway, context.get_setting('sms.developer_mobile'))
