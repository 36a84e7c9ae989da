import random
import time
import threading
import unittest

from pyrocko import util

from anisoray.parimap import parimap


class Crash(Exception):
    pass


def imapemulation(function, *iterables):
    iterables = list(map(iter, iterables))
    while True:
        args = []
        for it in iterables:
            try:
                args.append(next(it))
            except StopIteration:
                return

        yield function(*args)


def work_parimap(x, y, icrash):
    if x == icrash:
        raise Crash(str((x, y)))

    a = random.random()
    if a > 0.5:
        time.sleep((a*0.01)**2)

    return x+y


class ParimapTestCase(unittest.TestCase):

    def test_parimap(self):

        n = 1000

        for i in range(5):
            nthreads = random.randint(1, 10)
            nx = random.randint(0, n)
            ny = random.randint(0, n)
            icrash = random.randint(0, n)

            I1 = parimap(
                work_parimap, range(nx), range(ny), [icrash]*n,
                nthreads=nthreads)

            I2 = imapemulation(
                work_parimap, range(nx), range(ny), [icrash]*n)

            while True:

                exc1, exc2 = None, None
                res1, res2 = None, None
                end1, end2 = None, None
                try:
                    res1 = next(I1)
                except StopIteration:
                    end1 = True
                except Crash as e1:
                    exc1 = e1

                try:
                    res2 = next(I2)
                except StopIteration:
                    end2 = True
                except Crash as e2:
                    exc2 = e2

                assert res1 == res2, str((res1, res2))
                assert type(exc1) == type(exc2)
                assert end1 == end2

                if end1 or end2 or exc1 or exc2:
                    break

    def test_threads(self):
        names = set()
        lock = threading.Lock()

        def work(x):
            with lock:
                names.add(threading.current_thread().name)

            time.sleep(0.001)
            return x * 2

        self.assertEqual(
            list(parimap(work, range(50), nthreads=4)),
            [x * 2 for x in range(50)])

        assert 1 <= len(names) <= 4

        names.clear()
        self.assertEqual(
            list(parimap(work, range(10), nthreads=1)),
            [x * 2 for x in range(10)])

        self.assertEqual(names, set([threading.current_thread().name]))

    def test_empty(self):
        self.assertEqual(list(parimap(abs, [], nthreads=3)), [])
        self.assertEqual(list(parimap(abs, [])), [])


if __name__ == '__main__':
    util.setup_logging('test_parimap', 'warning')
    unittest.main()
