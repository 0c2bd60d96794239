import json
import logging
from kafka import KafkaProducer
from kafka.errors import NoBrokersAvailable, KafkaError

logger = logging.getLogger(__name__)

DEFAULT_BROKERS = ['localhost:30092']
DEFAULT_TOPIC = 'chaos-events'

class ChaosKafkaProducer:
    #Publishes chaos experiment lifecycle events; degrades to a no-op without brokers
    def __init__(self, brokers=None, topic=None):
        self.brokers = brokers if brokers else DEFAULT_BROKERS
        self.topic = topic if topic else DEFAULT_TOPIC
        self.producer = None
        self.connected = False
        self._connect()

    def _connect(self):
        try:
            self.producer = KafkaProducer(
                bootstrap_servers=self.brokers,
                key_serializer=lambda k: k.encode('utf-8'),
                value_serializer=lambda v: json.dumps(v).encode('utf-8'),
                client_id='kubechaos-producer'
            )
            self.connected = True
            logger.info(f"Kafka producer successfully connected to {self.brokers}")
        except NoBrokersAvailable:
            logger.warning(f"Unable to find brokers at {self.brokers}. Kafka messages will not be sent.")
            self.producer = None
            self.connected = False
        except KafkaError as e:
            logger.warning(f"Kafka connection to {self.brokers} failed: {e}. Kafka messages will not be sent.")
            self.producer = None
            self.connected = False

    def send_event(self, event_data, key):
        if not self.connected or not self.producer:
            logger.debug(f"Kafka producer not connected, dropping event: {event_data.get('event_type', 'N/A')} - {key}")
            return False

        try:
            self.producer.send(self.topic, key=key, value=event_data)
            self.producer.flush()
            logger.info(f"Sent event to Kafka: {event_data.get('event_type', 'N/A')} - {key}")
            return True
        except KafkaError as e:
            logger.error(f"Failed to send event to Kafka topic '{self.topic}': {e}")
            return False

    def close(self):
        if self.producer:
            logger.info("Closing Kafka producer")
            self.producer.flush()
            self.producer.close()
            self.connected = False
