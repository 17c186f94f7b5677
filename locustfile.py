from locust import HttpUser, task, constant

class SignalUser(HttpUser):
    # Dashboards poll the trader status about once a second
    wait_time = constant(1.0)

    @task(5)
    def get_signal(self):
        self.client.get("/signal")

    @task(1)
    def get_health(self):
        self.client.get("/health")
